"""
Custom exceptions for the sync service.
"""

from typing import Optional


class AuthenticationFailure(Exception):
    """Raised when a webhook signature is missing or invalid. Rejects the whole batch."""

    pass


class ValidationFailure(Exception):
    """Raised when an inbound payload has the wrong shape. Rejects the whole batch."""

    pass


class UnprocessableEntity(Exception):
    """Raised when a fetched remote object can't be synced, e.g. a contact without an email"""

    pass


class LocalPersistenceFailure(Exception):
    """Raised when a write to the local store fails"""

    def __init__(self, entity: str, natural_key: Optional[str], detail: str):
        self.entity = entity
        self.natural_key = natural_key
        super().__init__(f'Failed to save {entity} {natural_key}: {detail}')


class DownstreamUnavailable(Exception):
    """Raised when Moca can't be reached. Never escalates past a warning."""

    pass


class RemoteError(Exception):
    """
    An error response from a remote API, carrying the HTTP status code so the retry policy can
    classify it.
    """

    def __init__(
        self,
        operation: str,
        status_code: Optional[int],
        message: str = '',
        retry_after: Optional[float] = None,
        body: Optional[dict] = None,
    ):
        self.operation = operation
        self.status_code = status_code
        self.message = message
        self.retry_after = retry_after
        self.body = body or {}
        super().__init__(f'{operation} failed with status {status_code}: {message}')


class RemoteNotFound(RemoteError):
    """404 from a remote API, never retried"""

    pass


class RemoteClientError(RemoteError):
    """Any other 4xx from a remote API, never retried"""

    pass


class RemoteUnavailable(RemoteError):
    """Raised once the retry policy has given up on a rate limited or failing remote API"""

    def __init__(self, operation: str, attempts: int, elapsed: float, last_error: Exception):
        self.attempts = attempts
        self.elapsed = elapsed
        self.last_error = last_error
        status_code = getattr(last_error, 'status_code', None)
        super().__init__(
            operation,
            status_code,
            f'gave up after {attempts} attempts in {elapsed:.2f}s, last error: {last_error}',
        )
