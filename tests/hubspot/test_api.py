"""
Tests for the HubSpot API client.
"""

from unittest.mock import patch

import pytest

from app.exceptions import RemoteClientError, RemoteNotFound, RemoteUnavailable
from app.hubspot import api
from app.hubspot.models import HubSpotContact, HubSpotDeal
from tests.helpers import FakeHubSpot, MockResponse, fake_request


class TestHubSpotRequest:
    @patch('httpx.AsyncClient.request')
    async def test_get_contact(self, mock_request):
        fake = FakeHubSpot()
        fake.add_contact(101, email='jane@example.com', firstname='Jane', lastname=None)
        mock_request.side_effect = fake_request(fake)

        contact = await api.get_contact('101')

        assert contact == HubSpotContact(id='101', first_name='Jane', last_name='', email='jane@example.com')
        kwargs = mock_request.call_args.kwargs
        assert kwargs['method'] == 'GET'
        assert kwargs['url'] == 'https://api.hubapi.com/crm/v3/objects/contacts/101'
        assert kwargs['params'] == {'properties': 'firstname,lastname,email'}
        assert kwargs['headers']['Authorization'].startswith('Bearer ')

    @patch('httpx.AsyncClient.request')
    async def test_rate_limited_then_succeeds(self, mock_request):
        mock_request.side_effect = [
            MockResponse(
                {'message': 'You have reached your secondly limit.'}, status_code=429, headers={'Retry-After': '0'}
            ),
            MockResponse({'id': '301', 'properties': {'dealname': None, 'amount': '10'}}),
        ]

        deal = await api.get_deal('301')

        assert deal == HubSpotDeal(id='301', name='Unnamed Deal', stage=None, amount=10.0)
        assert mock_request.call_count == 2

    @patch('httpx.AsyncClient.request')
    async def test_rate_limited_until_exhausted(self, mock_request):
        mock_request.return_value = MockResponse({'message': 'Too many requests'}, status_code=429)

        with pytest.raises(RemoteUnavailable) as exc_info:
            await api.get_contact('101')

        assert mock_request.call_count == 3
        assert exc_info.value.status_code == 429

    @patch('httpx.AsyncClient.request')
    async def test_not_found_not_retried(self, mock_request):
        mock_request.side_effect = fake_request(FakeHubSpot())

        with pytest.raises(RemoteNotFound):
            await api.get_company('201')

        assert mock_request.call_count == 1

    @patch('httpx.AsyncClient.request')
    async def test_bad_request_not_retried(self, mock_request):
        mock_request.return_value = MockResponse({'message': 'Property values were not valid'}, status_code=400)

        with pytest.raises(RemoteClientError) as exc_info:
            await api.update_contact('101', {'email': 'nope'})

        assert mock_request.call_count == 1
        assert exc_info.value.message == 'Property values were not valid'

    @patch('httpx.AsyncClient.request')
    async def test_server_error_retried(self, mock_request, monkeypatch, test_settings):
        monkeypatch.setattr(test_settings, 'hubspot_retry_attempts', 5)
        mock_request.return_value = MockResponse({'message': 'Internal error'}, status_code=502)

        with pytest.raises(RemoteUnavailable):
            await api.get_line_item('401')

        assert mock_request.call_count == 5


class TestHubSpotOperations:
    @patch('httpx.AsyncClient.request')
    async def test_get_associations(self, mock_request):
        fake = FakeHubSpot()
        fake.associate('contacts', 'companies', 101, [201, 202])
        mock_request.side_effect = fake_request(fake)

        assert await api.get_associations('contacts', 'companies', '101') == ['201', '202']
        assert await api.get_associations('contacts', 'deals', '101') == []
        assert mock_request.call_args.kwargs['json'] == {'inputs': [{'id': '101'}]}

    @patch('httpx.AsyncClient.request')
    async def test_create_and_search_contact(self, mock_request):
        fake = FakeHubSpot()
        mock_request.side_effect = fake_request(fake)

        assert await api.search_contact_by_email('jane@example.com') is None
        contact_id = await api.create_contact({'email': 'jane@example.com', 'firstname': 'Jane'})
        assert await api.search_contact_by_email('jane@example.com') == contact_id
        assert fake.db['contacts'][contact_id]['properties']['firstname'] == 'Jane'

    @patch('httpx.AsyncClient.request')
    async def test_update_contact(self, mock_request):
        fake = FakeHubSpot()
        fake.add_contact(101)
        mock_request.side_effect = fake_request(fake)

        assert await api.update_contact('101', {'firstname': 'Janet'}) == '101'
        assert fake.db['contacts']['101']['properties']['firstname'] == 'Janet'
        assert mock_request.call_args.kwargs['method'] == 'PATCH'

    @patch('httpx.AsyncClient.request')
    async def test_delete_contact(self, mock_request):
        fake = FakeHubSpot()
        fake.add_contact(101)
        mock_request.side_effect = fake_request(fake)

        await api.delete_contact('101')

        assert fake.db['contacts'] == {}

    @patch('httpx.AsyncClient.request')
    async def test_check_status(self, mock_request):
        mock_request.side_effect = fake_request(FakeHubSpot())
        assert await api.check_status() is True

    @patch('httpx.AsyncClient.request')
    async def test_check_status_unavailable(self, mock_request):
        mock_request.return_value = MockResponse({'message': 'Authentication credentials not found'}, status_code=401)
        assert await api.check_status() is False
