import logging
import time
from hmac import compare_digest
from typing import Optional

from fastapi import APIRouter, Depends, Header
from starlette.requests import Request

from app.common.api.errors import HTTP401, HTTP404, HTTP409, HTTP412, HTTP503
from app.core.config import settings
from app.core.context import SyncContext
from app.exceptions import RemoteError, RemoteNotFound
from app.hubspot import api as hubspot_api
from app.moca import api as moca_api
from app.moca.models import MocaSyncResult, MocaWebhookEvent

logger = logging.getLogger('hubsync.moca')


async def verify_moca_signature(moca_signature: Optional[str] = Header(None, alias='X-Moca-Signature')) -> None:
    """
    Moca signs its requests with the shared secret itself. Same bypass rules as the HubSpot webhook.
    """
    if not settings.is_production:
        logger.warning(f'Skipping Moca signature verification, app_mode is {settings.app_mode!r}')
        return
    if not settings.moca_secret:
        logger.warning('Skipping Moca signature verification, no secret configured')
        return
    if not moca_signature:
        logger.warning('Missing X-Moca-Signature header')
        raise HTTP401('Missing signature header')
    if not compare_digest(moca_signature.encode(), settings.moca_secret.encode()):
        logger.warning('Invalid Moca signature')
        raise HTTP401('Invalid signature')


router = APIRouter(prefix='/moca', tags=['moca'], dependencies=[Depends(verify_moca_signature)])


def _now_ms() -> int:
    return int(time.time() * 1000)


async def _get_hubspot_contact(object_id: Optional[str], action: str):
    if not object_id:
        raise HTTP412(f'Contact must have an objectId for {action}!')
    try:
        return await hubspot_api.get_contact(object_id)
    except RemoteNotFound:
        raise HTTP404('Contact does not exist in HubSpot!')


async def create_contact(event: MocaWebhookEvent, log) -> MocaSyncResult:
    if not event.properties or not event.properties.email:
        log.warning(f'Invalid contact data, no email: {event.properties}')
        raise HTTP412('Contact must have at least an email!')
    if await hubspot_api.search_contact_by_email(event.properties.email):
        raise HTTP409('Email already exists in HubSpot!')
    contact_id = await hubspot_api.create_contact(event.properties.hubspot_properties())
    log.info(f'Created HubSpot contact {contact_id} from Moca client {event.properties.id}')
    return MocaSyncResult(status=True, action=event.action, id=contact_id, date=_now_ms())


async def update_contact(event: MocaWebhookEvent, log) -> MocaSyncResult:
    hs_contact = await _get_hubspot_contact(event.object_id, 'update')
    properties = event.properties.hubspot_properties() if event.properties else {}
    # HubSpot owns the email address
    properties['email'] = hs_contact.email
    contact_id = await hubspot_api.update_contact(hs_contact.id, properties)
    log.info(f'Updated HubSpot contact {contact_id} from Moca')
    return MocaSyncResult(status=True, action=event.action, id=contact_id, date=_now_ms())


async def delete_contact(event: MocaWebhookEvent, log) -> MocaSyncResult:
    hs_contact = await _get_hubspot_contact(event.object_id, 'deletion')
    await hubspot_api.delete_contact(hs_contact.id)
    log.info(f'Deleted HubSpot contact {hs_contact.id} from Moca')
    return MocaSyncResult(
        status=True, action=event.action, id=hs_contact.id, date=_now_ms(), message='Contact deleted successfully'
    )


async def find_contact(event: MocaWebhookEvent, log) -> MocaSyncResult:
    if not event.email_search:
        raise HTTP412('emailSearch is required for GET!')
    contact_id = await hubspot_api.search_contact_by_email(event.email_search)
    if not contact_id:
        raise HTTP404('Contact does not exist in HubSpot!')
    return MocaSyncResult(status=True, action=event.action, id=contact_id, date=_now_ms())


ACTION_HANDLERS = {
    'POST': create_contact,
    'PATCH': update_contact,
    'DELETE': delete_contact,
    'GET': find_contact,
}


@router.post('/sync', name='moca-sync')
async def moca_sync(events: list[MocaWebhookEvent], request: Request):
    """
    Process Moca webhooks: Moca → HubSpot

    Each event creates, updates, deletes or looks up a single HubSpot contact. The local DB is updated
    when HubSpot sends the resulting webhook.
    """
    log = SyncContext.from_request(request).logger(logger)
    log.info(f'Received Moca webhook with {len(events)} event(s)')
    results = []
    for event in events:
        try:
            results.append(await ACTION_HANDLERS[event.action](event, log))
        except RemoteError as e:
            log.error(f'HubSpot request failed for Moca {event.action} event {event.event_id}: {e}')
            raise HTTP503('HubSpot API is not available')
    return {'status': 'ok', 'results': [r.model_dump() for r in results]}


@router.post('/check-app-api', name='moca-check-app-api')
async def check_app_api():
    return {'status': 'ok' if await moca_api.ping() else 'unavailable'}


@router.post('/check-hubspot-api', name='moca-check-hubspot-api')
async def check_hubspot_api():
    if not await hubspot_api.check_status():
        raise HTTP503('HubSpot API is not available')
    return {'status': 'ok'}
