"""
Test helpers: in-memory fakes of the HubSpot and Moca APIs, used by patching httpx.AsyncClient.request.
"""

import re
from typing import Any, Dict, Optional

from app.core.config import settings


class MockResponse:
    """Mock HTTP response object for testing"""

    def __init__(
        self,
        json_data: Optional[Dict[str, Any]] = None,
        status_code: int = 200,
        text: str = '',
        headers: Optional[Dict[str, str]] = None,
    ):
        self._json_data = json_data or {}
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}

    def json(self) -> Dict[str, Any]:
        return self._json_data


class FakeHubSpot:
    def __init__(self):
        self.db = {'contacts': {}, 'companies': {}, 'deals': {}, 'line_items': {}}
        self.associations = {}
        self.calls = []
        self._next_id = 1000

    def add(self, object_type: str, object_id, **properties) -> str:
        object_id = str(object_id)
        self.db[object_type][object_id] = {'id': object_id, 'properties': properties}
        return object_id

    def add_contact(self, contact_id, email='jane@example.com', firstname='Jane', lastname='Doe') -> str:
        return self.add('contacts', contact_id, email=email, firstname=firstname, lastname=lastname)

    def associate(self, from_type: str, to_type: str, from_id, to_ids: list):
        self.associations[(from_type, to_type, str(from_id))] = [str(i) for i in to_ids]

    def new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)


class FakeMoca:
    def __init__(self):
        self.clients = {}
        self.up = True
        self.calls = []
        self._next_id = 1

    def add_client(self, email: str, **data) -> str:
        moca_user_id = f'moca_{self._next_id}'
        self._next_id += 1
        self.clients[moca_user_id] = {'id': moca_user_id, 'email': email, **data}
        return moca_user_id


def _hubspot_response(fake: FakeHubSpot, method: str, path: str, json: Optional[dict]) -> MockResponse:
    if m := re.fullmatch(r'crm/v3/associations/(\w+)/(\w+)/batch/read', path):
        from_type, to_type = m.groups()
        results = []
        for item in json['inputs']:
            to_ids = fake.associations.get((from_type, to_type, item['id']), [])
            if to_ids:
                results.append({'from': {'id': item['id']}, 'to': [{'id': i, 'type': 'default'} for i in to_ids]})
        return MockResponse({'status': 'COMPLETE', 'results': results})

    if path == 'crm/v3/objects/contacts/search':
        email = json['filterGroups'][0]['filters'][0]['value']
        results = [c for c in fake.db['contacts'].values() if c['properties'].get('email') == email]
        return MockResponse({'total': len(results), 'results': results})

    m = re.fullmatch(r'crm/v3/objects/(\w+)(?:/(\w+))?', path)
    assert m, f'Unexpected HubSpot path {path}'
    object_type, object_id = m.groups()
    objects = fake.db[object_type]
    if method == 'POST':
        object_id = fake.new_id()
        objects[object_id] = {'id': object_id, 'properties': json['properties']}
        return MockResponse(objects[object_id], status_code=201)
    if not object_id:
        assert method == 'GET'
        return MockResponse({'results': list(objects.values())[:1]})
    if object_id not in objects:
        return MockResponse({'status': 'error', 'message': 'resource not found'}, status_code=404)
    if method == 'GET':
        return MockResponse(objects[object_id])
    if method == 'PATCH':
        objects[object_id]['properties'].update(json['properties'])
        return MockResponse(objects[object_id])
    assert method == 'DELETE'
    del objects[object_id]
    return MockResponse(status_code=204)


def _moca_response(fake: FakeMoca, method: str, path: str, json: Optional[dict]) -> MockResponse:
    if not fake.up:
        return MockResponse({'error': 'Service temporarily unavailable'}, status_code=503)
    if path == 'health':
        return MockResponse({'status': 'ok'})
    if path == 'client':
        assert method == 'POST'
        for moca_user_id, client in fake.clients.items():
            if client['email'] == json['email']:
                return MockResponse(
                    {'error': 'Contact with this email already exists', 'id': moca_user_id, 'mocaUserId': moca_user_id},
                    status_code=409,
                )
        moca_user_id = fake.add_client(**json)
        return MockResponse({'id': moca_user_id, 'message': 'Contact created successfully'}, status_code=201)
    moca_user_id = re.fullmatch(r'client/(\w+)', path).group(1)
    assert method == 'PUT'
    if moca_user_id not in fake.clients:
        return MockResponse({'error': 'Contact not found'}, status_code=404)
    fake.clients[moca_user_id].update(json)
    return MockResponse({'id': moca_user_id, 'message': 'Contact updated successfully'})


def fake_request(
    fake_hubspot: Optional[FakeHubSpot] = None, fake_moca: Optional[FakeMoca] = None, error_responses: dict = None
):
    """
    Create a mock httpx request handler routing to the HubSpot and Moca fakes.

    Args:
        fake_hubspot: FakeHubSpot instance with test data
        fake_moca: FakeMoca instance with test data
        error_responses: Optional dict mapping (method, path) tuples to error responses.
            - For HTTP errors: tuple of (status_code, body) or (status_code, body, headers)
            - For exceptions: Exception instance to raise
            Example: {('GET', 'crm/v3/objects/companies/2'): (500, {'message': 'Internal Server Error'})}
                     {('GET', 'health'): httpx.ConnectError('Connection refused')}
    """
    fake_hubspot = fake_hubspot or FakeHubSpot()
    fake_moca = fake_moca or FakeMoca()
    error_responses = error_responses or {}

    def _request(*, method: str, url: str, headers: dict = None, params: dict = None, json: dict = None, timeout=None):
        if url.startswith(settings.hubspot_base_url):
            path = url[len(settings.hubspot_base_url) + 1 :]
            fake_hubspot.calls.append((method, path))
        else:
            assert url.startswith(settings.moca_api_url), url
            path = url[len(settings.moca_api_url) + 1 :]
            fake_moca.calls.append((method, path))

        error = error_responses.get((method, path))
        if isinstance(error, Exception):
            raise error
        elif error:
            status_code, body, *rest = error
            return MockResponse(body, status_code=status_code, headers=rest[0] if rest else None)

        if url.startswith(settings.hubspot_base_url):
            return _hubspot_response(fake_hubspot, method, path, json)
        return _moca_response(fake_moca, method, path, json)

    return _request


def hubspot_event(object_id, subscription_type='contact.propertyChange', event_id=1, **extra) -> dict:
    return {
        'eventId': event_id,
        'subscriptionId': 4849549,
        'portalId': 50687303,
        'appId': 25681700,
        'occurredAt': 1765043528476,
        'subscriptionType': subscription_type,
        'attemptNumber': 0,
        'objectId': int(object_id),
        'propertyName': 'firstname',
        'propertyValue': 'Jane',
        'changeSource': 'CRM_UI',
        'sourceId': 'userId:10202051',
        **extra,
    }
