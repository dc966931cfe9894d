import logging
from typing import Optional

import httpx
import logfire

from app.common.retry import RetryPolicy, call_with_retry
from app.core.config import settings
from app.exceptions import RemoteError

logger = logging.getLogger('hubsync.moca')

_client = httpx.AsyncClient()

CONFLICT_STATUS_CODE = 409


class MocaApiError(RemoteError):
    """An error response from the Moca API"""

    pass


def retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.moca_retry_attempts,
        initial_delay=settings.moca_retry_delay / 1000,
    )


def _headers() -> dict:
    headers = {'Content-Type': 'application/json', 'Accept': 'application/json'}
    if settings.moca_api_key:
        headers['Authorization'] = f'Bearer {settings.moca_api_key}'
    return headers


def _json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {'message': response.text}
    return data if isinstance(data, dict) else {}


async def _send(endpoint: str, *, method: str, data: Optional[dict]) -> dict:
    url = f'{settings.moca_api_url}/{endpoint}'
    with logfire.span(f'{method} {endpoint}'):
        response = await _client.request(method=method, url=url, headers=_headers(), json=data, timeout=30.0)
        logger.info(f'Request method={method} url={endpoint} status_code={response.status_code}')
        body = _json(response)
        if response.status_code == CONFLICT_STATUS_CODE and (body.get('mocaUserId') or body.get('id')):
            # The client already exists in Moca, which is as good as creating it
            existing_id = body.get('mocaUserId') or body.get('id')
            logger.info(f'Client already exists in Moca with id {existing_id}')
            return {'id': existing_id}
        if response.status_code >= 400:
            raise MocaApiError(
                f'{method} {endpoint}', response.status_code, body.get('error') or body.get('message', ''), body=body
            )
        return body


async def moca_request(endpoint: str, *, method: str = 'GET', data: Optional[dict] = None) -> dict:
    """
    Make a request to the Moca API through the retry policy.
    """

    async def _attempt():
        return await _send(endpoint, method=method, data=data)

    return await call_with_retry(_attempt, operation=f'{method} {endpoint}', policy=retry_policy())


async def ping() -> bool:
    """Whether the Moca API is up, a single request with a short timeout and no retries"""
    try:
        response = await _client.request(
            method='GET', url=f'{settings.moca_api_url}/health', headers=_headers(), timeout=settings.moca_ping_timeout
        )
    except httpx.HTTPError as e:
        logger.warning(f'Moca API is not available: {e}')
        return False
    if response.status_code >= 400:
        logger.warning(f'Moca API is not available: health check returned {response.status_code}')
        return False
    return True


async def create_client(payload: dict) -> str:
    """Create client in Moca, returns the Moca id"""
    data = await moca_request('client', method='POST', data=payload)
    moca_user_id = data.get('id') or data.get('mocaUserId')
    if not moca_user_id:
        raise MocaApiError('POST client', None, 'no id in response', body=data)
    return str(moca_user_id)


async def update_client(moca_user_id: str, payload: dict) -> str:
    """Update client in Moca, returns the Moca id"""
    data = await moca_request(f'client/{moca_user_id}', method='PUT', data=payload)
    return str(data.get('id') or moca_user_id)
