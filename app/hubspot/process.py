"""
Turns HubSpot webhook events into local state.

Each event fetches the root object from HubSpot, upserts it, then follows its associations to the
dependent objects (companies, deals, line items). Sibling objects are fetched concurrently and
upserted one at a time once their parent row exists. A failure only loses the smallest unit it
happened in: one line item, one company, one deal or, at most, one event.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
import logfire
from pydantic import ValidationError

from app.core.config import settings
from app.core.context import SyncContext
from app.core.database import DBSession
from app.exceptions import LocalPersistenceFailure, RemoteError, UnprocessableEntity
from app.hubspot import api
from app.hubspot.models import (
    ContactChanged,
    ContactDeleted,
    DealChanged,
    DealDeleted,
    HubSpotCompany,
    HubSpotContact,
    HubSpotDeal,
    HubSpotLineItem,
    HubSpotWebhookEvent,
    SyncEvent,
    classify_event,
)
from app.main_app.models import Contact, Deal
from app.main_app.repository import CompanyRepository, ContactRepository, DealRepository, LineItemRepository
from app.moca.tasks import sync_contact_to_moca

logger = logging.getLogger('hubsync.hubspot')

T = TypeVar('T')

# Errors that lose one company, deal or line item rather than the whole event
ITEM_ERRORS = (RemoteError, httpx.HTTPError, ValidationError, LocalPersistenceFailure, UnprocessableEntity)


def _contact_values(hs_contact: HubSpotContact) -> dict:
    return {
        'hubspot_id': hs_contact.id,
        'first_name': hs_contact.first_name,
        'last_name': hs_contact.last_name,
        'email': hs_contact.email,
    }


def _company_values(hs_company: HubSpotCompany, contact: Contact) -> dict:
    return {
        'hubspot_id': hs_company.id,
        'name': hs_company.name,
        'domain': hs_company.domain,
        'contact_id': contact.id,
    }


def _deal_values(hs_deal: HubSpotDeal, contact: Contact, has_line_items: bool) -> dict:
    return {
        'hubspot_id': hs_deal.id,
        'name': hs_deal.name,
        'stage': hs_deal.stage,
        'amount': hs_deal.amount,
        'has_line_items': has_line_items,
        'contact_id': contact.id,
    }


def _line_item_values(hs_line_item: HubSpotLineItem, deal: Deal) -> dict:
    return {
        'hubspot_id': hs_line_item.id,
        'name': hs_line_item.name,
        'quantity': hs_line_item.quantity,
        'price': hs_line_item.price,
        'product_id': hs_line_item.product_id,
        'deal_id': deal.id,
    }


async def _get_association_ids(from_type: str, to_type: str, object_id: str, log) -> list[str]:
    """Association lookups degrade to no associations rather than failing the event"""
    try:
        return await api.get_associations(from_type, to_type, object_id)
    except (RemoteError, httpx.HTTPError) as e:
        log.warning(f'Failed to get {to_type} associated with {from_type} {object_id}: {e}')
        return []


async def _fetch_all(
    fetch: Callable[[str], Awaitable[T]], hubspot_ids: list[str], entity: str, subscription_type: str, log
) -> list[T]:
    """
    Fetch sibling objects concurrently, dropping (and logging) the ones that fail.
    """
    results = await asyncio.gather(*(fetch(hubspot_id) for hubspot_id in hubspot_ids), return_exceptions=True)
    fetched = []
    for hubspot_id, result in zip(hubspot_ids, results):
        if isinstance(result, ITEM_ERRORS):
            log.error(f'Failed to fetch {entity} {hubspot_id} from HubSpot for {subscription_type}: {result}')
        elif isinstance(result, BaseException):
            raise result
        else:
            fetched.append(result)
    return fetched


async def _sync_companies(company_ids: list[str], contact: Contact, db: DBSession, subscription_type: str, log):
    hs_companies = await _fetch_all(api.get_company, company_ids, 'Company', subscription_type, log)
    repo = CompanyRepository(db)
    for hs_company in hs_companies:
        try:
            repo.upsert(_company_values(hs_company, contact))
        except LocalPersistenceFailure as e:
            log.error(f'Failed to save Company {hs_company.id} for {subscription_type}: {e}')


async def _sync_line_items(
    line_item_ids: list[str], deal: Deal, db: DBSession, subscription_type: str, log
) -> int:
    hs_line_items = await _fetch_all(api.get_line_item, line_item_ids, 'LineItem', subscription_type, log)
    repo = LineItemRepository(db)
    synced = 0
    for hs_line_item in hs_line_items:
        try:
            repo.upsert(_line_item_values(hs_line_item, deal))
        except LocalPersistenceFailure as e:
            log.error(f'Failed to save LineItem {hs_line_item.id} for {subscription_type}: {e}')
        else:
            synced += 1
    return synced


async def _fetch_deal_with_line_item_ids(deal_id: str, log) -> tuple[HubSpotDeal, list[str]]:
    hs_deal, line_item_ids = await asyncio.gather(
        api.get_deal(deal_id), _get_association_ids('deals', 'line_items', deal_id, log)
    )
    return hs_deal, line_item_ids


async def _sync_contact_deals(deal_ids: list[str], contact: Contact, db: DBSession, subscription_type: str, log):
    fetched = await _fetch_all(
        lambda deal_id: _fetch_deal_with_line_item_ids(deal_id, log), deal_ids, 'Deal', subscription_type, log
    )
    repo = DealRepository(db)
    for hs_deal, line_item_ids in fetched:
        try:
            deal = repo.upsert(_deal_values(hs_deal, contact, has_line_items=len(line_item_ids) > 0))
        except LocalPersistenceFailure as e:
            log.error(f'Failed to save Deal {hs_deal.id} for {subscription_type}: {e}')
            continue
        await _sync_line_items(line_item_ids, deal, db, subscription_type, log)


async def _fetch_valid_contact(hubspot_id: str) -> HubSpotContact:
    hs_contact = await api.get_contact(hubspot_id)
    if not hs_contact.is_valid:
        raise UnprocessableEntity(f'HubSpot contact {hubspot_id} has no email')
    return hs_contact


async def process_contact_event(
    hubspot_id: str, db: DBSession, ctx: SyncContext, subscription_type: str = 'contact.propertyChange'
) -> Contact:
    """
    Sync a contact and everything hanging off it: its companies, its deals and their line items.
    Finishes by pushing the contact to Moca, which never fails the event.
    """
    log = ctx.logger(logger)
    hs_contact = await _fetch_valid_contact(hubspot_id)
    contact = ContactRepository(db).upsert(_contact_values(hs_contact))

    company_ids, deal_ids = await asyncio.gather(
        _get_association_ids('contacts', 'companies', hubspot_id, log),
        _get_association_ids('contacts', 'deals', hubspot_id, log),
    )
    log.info(f'Contact {hubspot_id} has {len(company_ids)} companies and {len(deal_ids)} deals')
    await _sync_companies(company_ids, contact, db, subscription_type, log)
    await _sync_contact_deals(deal_ids, contact, db, subscription_type, log)

    if settings.moca_sync_enabled:
        await sync_contact_to_moca(contact, db, ctx)
    return contact


async def _get_or_sync_contact(hubspot_id: str, db: DBSession) -> Contact:
    repo = ContactRepository(db)
    contact = repo.find_by_natural_key(hubspot_id)
    if contact:
        return contact
    hs_contact = await _fetch_valid_contact(hubspot_id)
    return repo.upsert(_contact_values(hs_contact))


async def process_deal_event(
    hubspot_id: str, db: DBSession, ctx: SyncContext, subscription_type: str = 'deal.propertyChange'
) -> Deal:
    """
    Sync a deal along with its primary contact, that contact's companies and the deal's line items.
    """
    log = ctx.logger(logger)
    hs_deal, contact_ids = await asyncio.gather(
        api.get_deal(hubspot_id), _get_association_ids('deals', 'contacts', hubspot_id, log)
    )
    if not contact_ids:
        raise UnprocessableEntity(f'HubSpot deal {hubspot_id} has no associated contacts')

    # The first associated contact is the primary one
    contact = await _get_or_sync_contact(contact_ids[0], db)

    company_ids = await _get_association_ids('deals', 'companies', hubspot_id, log)
    await _sync_companies(company_ids, contact, db, subscription_type, log)

    deal_repo = DealRepository(db)
    deal = deal_repo.upsert(_deal_values(hs_deal, contact, has_line_items=False))

    line_item_ids = await _get_association_ids('deals', 'line_items', hubspot_id, log)
    await _sync_line_items(line_item_ids, deal, db, subscription_type, log)
    return deal_repo.set_has_line_items(deal, len(line_item_ids) > 0)


def process_contact_deletion(hubspot_id: str, db: DBSession, ctx: SyncContext) -> None:
    if not ContactRepository(db).delete_with_dependents(hubspot_id):
        ctx.logger(logger).info(f'Contact {hubspot_id} deleted in HubSpot was never synced, nothing to delete')


def process_deal_deletion(hubspot_id: str, db: DBSession, ctx: SyncContext) -> None:
    if not DealRepository(db).delete_with_line_items(hubspot_id):
        ctx.logger(logger).info(f'Deal {hubspot_id} deleted in HubSpot was never synced, nothing to delete')


async def _dispatch(sync_event: SyncEvent, subscription_type: str, db: DBSession, ctx: SyncContext) -> bool:
    """Returns whether the event was something we handle"""
    if isinstance(sync_event, ContactChanged):
        await process_contact_event(sync_event.object_id, db, ctx, subscription_type)
    elif isinstance(sync_event, DealChanged):
        await process_deal_event(sync_event.object_id, db, ctx, subscription_type)
    elif isinstance(sync_event, ContactDeleted):
        process_contact_deletion(sync_event.object_id, db, ctx)
    elif isinstance(sync_event, DealDeleted):
        process_deal_deletion(sync_event.object_id, db, ctx)
    else:
        ctx.logger(logger).info(f'Ignoring unhandled subscription type {subscription_type}')
        return False
    return True


async def process_webhook_events(
    events: list[HubSpotWebhookEvent], db: DBSession, ctx: Optional[SyncContext] = None
) -> int:
    """
    Process a verified batch of webhook events in delivery order.

    A failing event is logged and skipped, the rest of the batch carries on.

    Returns:
        The number of events successfully processed
    """
    ctx = ctx or SyncContext()
    log = ctx.logger(logger)
    processed = 0
    for event in events:
        sync_event = classify_event(event)
        with logfire.span(
            'process {subscription_type} {object_id}',
            subscription_type=event.subscription_type,
            object_id=event.object_id,
            event_id=event.event_id,
            attempt_number=event.attempt_number,
        ):
            try:
                if await _dispatch(sync_event, event.subscription_type, db, ctx):
                    processed += 1
            except Exception as e:
                log.error(
                    f'Failed to process {event.subscription_type} event {event.event_id} '
                    f'for object {event.object_id}: {e}',
                    exc_info=True,
                )
    log.info(f'Processed {processed}/{len(events)} webhook events')
    return processed
