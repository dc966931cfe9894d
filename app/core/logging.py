import logging
import sys

from .config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name"""
    return logging.getLogger(name)


class CorrelationIdAdapter(logging.LoggerAdapter):
    """Prefixes every message with the correlation id of the request being handled"""

    def process(self, msg, kwargs):
        return f'[{self.extra["correlation_id"]}] {msg}', kwargs
