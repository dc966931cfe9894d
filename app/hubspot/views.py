import logging

from fastapi import APIRouter, Depends
from starlette.requests import Request

from app.common.api.errors import HTTP400
from app.core.context import SyncContext
from app.core.database import DBSession, get_db
from app.exceptions import ValidationFailure
from app.hubspot.models import parse_webhook_events
from app.hubspot.process import process_webhook_events
from app.hubspot.signature import verify_hubspot_signature

logger = logging.getLogger('hubsync.hubspot')

router = APIRouter(prefix='/webhooks', tags=['hubspot'])


@router.post('/hubspot', name='hubspot-webhook', dependencies=[Depends(verify_hubspot_signature)])
async def hubspot_webhook(request: Request, db: DBSession = Depends(get_db)):
    """
    Process HubSpot webhooks: HubSpot → local DB → Moca

    HubSpot sends a JSON array of events, signed with X-HubSpot-Signature. A bad signature or a
    malformed payload rejects the whole batch, after that every event is processed on its own.
    """
    ctx = SyncContext.from_request(request)
    try:
        events = parse_webhook_events(await request.body())
    except ValidationFailure as e:
        ctx.logger(logger).warning(f'Rejecting HubSpot webhook: {e}')
        raise HTTP400(str(e))

    ctx.logger(logger).info(f'Received HubSpot webhook with {len(events)} event(s)')
    processed = await process_webhook_events(events, db, ctx)
    return {'status': 'success', 'message': 'Webhook processed', 'processed': processed}


@router.post('/health', name='webhooks-health')
async def webhooks_health():
    return {'status': 'ok'}
