import hashlib
import logging
from hmac import compare_digest
from typing import Optional

from fastapi import Header
from starlette.requests import Request

from app.common.api.errors import HTTP401
from app.core.config import settings

logger = logging.getLogger('hubsync.hubspot')

SIGNATURE_HEADER = 'X-HubSpot-Signature'


def compute_signature(raw_body: bytes, shared_secret: str) -> str:
    """HubSpot v1 signature: the hex SHA-256 of the client secret followed by the request body"""
    return hashlib.sha256(shared_secret.encode() + raw_body).hexdigest()


def verify_signature(raw_body: bytes, header_signature: Optional[str], shared_secret: str) -> bool:
    """
    Check the signature HubSpot sent against the exact bytes received. Never raises, a missing or
    malformed header is just an invalid signature.
    """
    if not header_signature:
        return False
    try:
        header_bytes = header_signature.strip().lower().encode('ascii')
    except UnicodeEncodeError:
        return False
    return compare_digest(compute_signature(raw_body, shared_secret).encode(), header_bytes)


async def verify_hubspot_signature(
    request: Request, hubspot_signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER)
) -> None:
    """
    FastAPI dependency that rejects the whole webhook batch when the signature doesn't match.
    """
    if not settings.is_production:
        logger.warning(f'Skipping HubSpot signature verification, app_mode is {settings.app_mode!r}')
        return
    if not settings.hubspot_webhook_secret:
        logger.warning('Skipping HubSpot signature verification, no webhook secret configured')
        return

    raw_body = await request.body()
    if not verify_signature(raw_body, hubspot_signature, settings.hubspot_webhook_secret):
        logger.warning(f'Invalid HubSpot webhook signature from {request.client.host if request.client else None}')
        raise HTTP401('Invalid signature')
