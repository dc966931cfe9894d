import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from starlette.requests import Request

from app.core.logging import CorrelationIdAdapter

CORRELATION_ID_HEADER = 'X-Correlation-ID'


@dataclass(frozen=True)
class SyncContext:
    """
    Request-scoped values handed explicitly to every sync function.
    """

    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_request(cls, request: Request) -> 'SyncContext':
        correlation_id: Optional[str] = getattr(request.state, 'correlation_id', None)
        if not correlation_id:
            correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
        return cls(correlation_id=correlation_id)

    def logger(self, logger: logging.Logger) -> CorrelationIdAdapter:
        return CorrelationIdAdapter(logger, {'correlation_id': self.correlation_id})
