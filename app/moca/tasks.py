import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx
import logfire

from app.core.context import SyncContext
from app.core.database import DBSession
from app.exceptions import DownstreamUnavailable, LocalPersistenceFailure, RemoteError, RemoteNotFound
from app.main_app.models import Contact
from app.main_app.repository import ContactRepository
from app.moca import api

logger = logging.getLogger('hubsync.moca')


@dataclass(frozen=True)
class SyncOutcome:
    succeeded: bool
    synced_at: datetime
    moca_user_id: Optional[str] = None


def _contact_to_client_data(contact: Contact) -> dict:
    return {
        'email': contact.email,
        'firstname': contact.first_name,
        'lastname': contact.last_name,
        'hubspotId': contact.hubspot_id,
    }


async def _push_contact(contact: Contact, log) -> str:
    """
    Update the client when we already know its Moca id, falling back to creating it when Moca no
    longer has it.
    """
    client_data = _contact_to_client_data(contact)
    if contact.moca_user_id:
        try:
            return await api.update_client(contact.moca_user_id, client_data)
        except RemoteNotFound:
            log.warning(f'Client {contact.moca_user_id} not found in Moca, creating it instead')
    return await api.create_client(client_data)


async def sync_contact_to_moca(contact: Contact, db: DBSession, ctx: SyncContext) -> SyncOutcome:
    """
    Sync a contact to Moca and record the outcome on the contact. Never raises, a contact that fails
    to sync is marked with sync_status False and picked up again on its next change.
    """
    log = ctx.logger(logger)
    with logfire.span('sync_contact_to_moca', contact_id=contact.id):
        moca_user_id = None
        try:
            if not await api.ping():
                raise DownstreamUnavailable('Moca API is not available')
            moca_user_id = await _push_contact(contact, log)
        except (DownstreamUnavailable, RemoteError, httpx.HTTPError) as e:
            log.warning(f'Failed to sync Contact:{contact.id} ({contact.email}) to Moca: {e}')
            outcome = SyncOutcome(succeeded=False, synced_at=datetime.now(timezone.utc))
        else:
            log.info(f'Synced Contact:{contact.id} ({contact.email}) to Moca as {moca_user_id}')
            outcome = SyncOutcome(succeeded=True, synced_at=datetime.now(timezone.utc), moca_user_id=moca_user_id)

        try:
            ContactRepository(db).record_sync(
                contact, succeeded=outcome.succeeded, synced_at=outcome.synced_at, moca_user_id=outcome.moca_user_id
            )
        except LocalPersistenceFailure as e:
            log.error(f'Failed to record Moca sync outcome for Contact:{contact.id}: {e}')
        return outcome
