"""
Retry policy used for every call to a remote API.

Errors are classified by status code:

- 429 is retried, waiting for the Retry-After header if there is one, else exponential backoff
- 5xx and transport errors are retried with exponential backoff
- 404 is raised immediately as RemoteNotFound
- any other 4xx is raised immediately as RemoteClientError

Once max_attempts is used up the last error is raised wrapped in RemoteUnavailable.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from app.exceptions import RemoteClientError, RemoteError, RemoteNotFound, RemoteUnavailable

logger = logging.getLogger('hubsync.retry')

T = TypeVar('T')

RATE_LIMIT_STATUS_CODE = 429
NOT_FOUND_STATUS_CODE = 404


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds
    multiplier: float = 2
    max_delay: float = 30.0

    def backoff(self, attempt: int) -> float:
        """The delay after a failed attempt, attempts are counted from 1"""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)


def is_retryable(error: Exception) -> bool:
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, RemoteError):
        return error.status_code == RATE_LIMIT_STATUS_CODE or (error.status_code or 0) >= 500
    return False


def _as_terminal(error: RemoteError) -> RemoteError:
    if isinstance(error, (RemoteNotFound, RemoteClientError)):
        return error
    cls = RemoteNotFound if error.status_code == NOT_FOUND_STATUS_CODE else RemoteClientError
    return cls(error.operation, error.status_code, error.message, error.retry_after, error.body)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    operation: str,
    policy: RetryPolicy,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """
    Call fn until it succeeds, a terminal error is raised or policy.max_attempts is reached.

    Args:
        fn: Zero argument coroutine function making the remote call
        operation: Name used in logs and errors, e.g. 'GET crm/v3/objects/contacts/1'
        policy: Retry limits and backoff
        sleep: Used for the backoff delay, defaults to asyncio.sleep

    Returns:
        Whatever fn returns
    """
    sleep = sleep or asyncio.sleep
    start = time.monotonic()
    delay = 0.0
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except (RemoteError, httpx.TransportError) as e:
            if not is_retryable(e):
                raise _as_terminal(e) from e

            if attempt >= policy.max_attempts:
                elapsed = time.monotonic() - start
                logger.error(f'{operation} failed after {attempt} attempts in {elapsed:.2f}s: {e}')
                raise RemoteUnavailable(operation, attempt, elapsed, e) from e

            retry_after = getattr(e, 'retry_after', None)
            if retry_after is not None and getattr(e, 'status_code', None) == RATE_LIMIT_STATUS_CODE:
                next_delay = min(retry_after, policy.max_delay)
            else:
                next_delay = policy.backoff(attempt)
            # never wait less than the previous attempt did
            delay = max(delay, next_delay)

            logger.warning(
                f'{operation} attempt {attempt}/{policy.max_attempts} failed ({e}), retrying in {delay:.2f}s'
            )
            await sleep(delay)
