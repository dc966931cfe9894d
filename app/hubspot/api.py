import logging
from typing import Optional

import httpx
import logfire
from httpx_limiter import AsyncRateLimitedTransport, Rate

from app.common.retry import RetryPolicy, call_with_retry
from app.core.config import settings
from app.exceptions import RemoteError
from app.hubspot.models import HubSpotCompany, HubSpotContact, HubSpotDeal, HubSpotLineItem

logger = logging.getLogger('hubsync.hubspot')

_transport = AsyncRateLimitedTransport.create(
    Rate.create(magnitude=settings.hubspot_api_max_rate, duration=settings.hubspot_api_rate_period)
)
_client = httpx.AsyncClient(
    transport=_transport
)  # need to use a singleton client to keep the rate limiting throughout all the requests.

CONTACT_PROPERTIES = ['firstname', 'lastname', 'email']
COMPANY_PROPERTIES = ['name', 'domain']
DEAL_PROPERTIES = ['dealname', 'dealstage', 'amount']
LINE_ITEM_PROPERTIES = ['name', 'quantity', 'price', 'hs_product_id']


class HubSpotApiError(RemoteError):
    """An error response from the HubSpot API"""

    pass


def retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.hubspot_retry_attempts,
        initial_delay=settings.hubspot_retry_delay / 1000,
        multiplier=settings.hubspot_retry_multiplier,
        max_delay=settings.hubspot_retry_max_delay / 1000,
    )


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get('retry-after') or response.headers.get('Retry-After')
    try:
        return max(float(value), 0) if value is not None else None
    except ValueError:
        return None


def _error_body(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {'message': response.text}
    return data if isinstance(data, dict) else {'message': str(data)}


async def _send(endpoint: str, *, method: str, query_params: Optional[dict], data: Optional[dict]) -> dict:
    url = f'{settings.hubspot_base_url}/{endpoint}'
    headers = {
        'Authorization': f'Bearer {settings.hubspot_api_key}',
        'Content-Type': 'application/json',
        'Accept': 'application/json',
    }
    with logfire.span(f'{method} {endpoint}'):
        response = await _client.request(
            method=method, url=url, headers=headers, params=query_params, json=data, timeout=30.0
        )
        logger.info(f'Request method={method} url={endpoint} status_code={response.status_code}')
        if response.status_code >= 400:
            body = _error_body(response)
            logger.warning(f'HubSpot API error for {method} {endpoint}: {response.status_code} {body}')
            raise HubSpotApiError(
                f'{method} {endpoint}',
                response.status_code,
                body.get('message', ''),
                retry_after=_retry_after(response),
                body=body,
            )
        if response.status_code == 204:
            return {}
        return response.json()


async def hubspot_request(
    endpoint: str,
    *,
    method: str = 'GET',
    query_params: Optional[dict] = None,
    data: Optional[dict] = None,
) -> dict:
    """
    Make a request to the HubSpot CRM API. Every request goes through the retry policy.

    Args:
        endpoint: The API endpoint, e.g. 'crm/v3/objects/contacts/123'
        method: HTTP method (GET, POST, PATCH, DELETE)
        query_params: Query parameters dict
        data: Request body data

    Returns:
        Response JSON data
    """

    async def _attempt():
        return await _send(endpoint, method=method, query_params=query_params, data=data)

    return await call_with_retry(_attempt, operation=f'{method} {endpoint}', policy=retry_policy())


async def _get_object(object_type: str, object_id: str, properties: list[str]) -> dict:
    return await hubspot_request(
        f'crm/v3/objects/{object_type}/{object_id}', query_params={'properties': ','.join(properties)}
    )


async def get_contact(contact_id: str) -> HubSpotContact:
    """Get contact from HubSpot"""
    return HubSpotContact(**await _get_object('contacts', contact_id, CONTACT_PROPERTIES))


async def get_company(company_id: str) -> HubSpotCompany:
    """Get company from HubSpot"""
    return HubSpotCompany(**await _get_object('companies', company_id, COMPANY_PROPERTIES))


async def get_deal(deal_id: str) -> HubSpotDeal:
    """Get deal from HubSpot"""
    return HubSpotDeal(**await _get_object('deals', deal_id, DEAL_PROPERTIES))


async def get_line_item(line_item_id: str) -> HubSpotLineItem:
    """Get line item from HubSpot"""
    return HubSpotLineItem(**await _get_object('line_items', line_item_id, LINE_ITEM_PROPERTIES))


async def get_associations(from_type: str, to_type: str, object_id: str) -> list[str]:
    """
    Get the ids of the to_type objects associated with an object, e.g. the companies of a contact.
    Types are HubSpot's plural object names: contacts, companies, deals, line_items.
    """
    data = await hubspot_request(
        f'crm/v3/associations/{from_type}/{to_type}/batch/read', method='POST', data={'inputs': [{'id': object_id}]}
    )
    return [str(assoc['id']) for result in data.get('results', []) for assoc in result.get('to', [])]


async def create_contact(properties: dict) -> str:
    """Create contact in HubSpot, returns the new id"""
    data = await hubspot_request('crm/v3/objects/contacts', method='POST', data={'properties': properties})
    return str(data['id'])


async def update_contact(contact_id: str, properties: dict) -> str:
    """Update contact using PATCH, only the properties given are changed"""
    data = await hubspot_request(
        f'crm/v3/objects/contacts/{contact_id}', method='PATCH', data={'properties': properties}
    )
    return str(data.get('id', contact_id))


async def search_contact_by_email(email: str) -> Optional[str]:
    """Find a contact's id by their email, None if there is no such contact"""
    data = await hubspot_request(
        'crm/v3/objects/contacts/search',
        method='POST',
        data={
            'filterGroups': [{'filters': [{'propertyName': 'email', 'operator': 'EQ', 'value': email}]}],
            'properties': CONTACT_PROPERTIES,
            'limit': 1,
        },
    )
    results = data.get('results') or []
    return str(results[0]['id']) if results else None


async def delete_contact(contact_id: str) -> None:
    """Archive contact in HubSpot"""
    await hubspot_request(f'crm/v3/objects/contacts/{contact_id}', method='DELETE')


async def check_status() -> bool:
    """Whether the HubSpot API is reachable with our credentials"""
    try:
        await hubspot_request('crm/v3/objects/contacts', query_params={'limit': 1})
    except (RemoteError, httpx.HTTPError) as e:
        logger.warning(f'HubSpot API unavailable: {e}')
        return False
    return True

