"""ContentPublisher and PinataClient tests.

PinataClient is tested with a mocked httpx client, the same way the
other HTTP clients are.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from bonfire_provisioning.ipfs.pinata_client import PinataClient, pin_name
from bonfire_provisioning.ipfs.publisher import ContentPublisher
from bonfire_provisioning.models import IdentityMetadata, ServiceEndpoint
from bonfire_provisioning.provisioning.errors import (
    ContentRejected,
    NetworkError,
    QuotaExceeded,
)
from bonfire_provisioning.testing import InMemoryContentStore

DOC = IdentityMetadata(
    name='Research Scout',
    description='Finds papers.',
    services=(ServiceEndpoint(endpoint='https://delve.example'),),
    capabilities=('search',),
)


def _make_client(response=None, *, side_effect=None):
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(return_value=response, side_effect=side_effect)
    client = PinataClient(
        jwt='test-pinata-jwt',
        base_url='https://api.pinata.example/',
        http_client=mock_http,
        timeout_seconds=5,
    )
    return client, mock_http


# ── ContentPublisher ─────────────────────────────────────────────────


class TestPublisher:
    @pytest.mark.asyncio
    async def test_returns_ipfs_reference(self):
        store = InMemoryContentStore()
        ref = await ContentPublisher(store).publish(DOC)
        assert ref.cid.startswith('bafy')
        assert ref.uri == f'ipfs://{ref.cid}'
        assert store.puts == [(DOC.to_json_dict(), 'Research Scout')]

    @pytest.mark.asyncio
    async def test_republishing_same_document_makes_no_write(self):
        store = InMemoryContentStore()
        publisher = ContentPublisher(store)

        first = await publisher.publish(DOC)
        second = await publisher.publish(
            IdentityMetadata.from_json_dict(DOC.to_json_dict())
        )

        assert first == second
        assert len(store.puts) == 1

    @pytest.mark.asyncio
    async def test_different_documents_are_written(self):
        store = InMemoryContentStore()
        publisher = ContentPublisher(store)
        other = IdentityMetadata(
            name='Other', description='', services=DOC.services, capabilities=('x',),
        )

        first = await publisher.publish(DOC)
        second = await publisher.publish(other)

        assert first.cid != second.cid
        assert len(store.puts) == 2

    @pytest.mark.asyncio
    async def test_failures_propagate_and_are_not_cached(self):
        store = InMemoryContentStore()
        store.put_errors.append(NetworkError('down'))
        publisher = ContentPublisher(store)

        with pytest.raises(NetworkError):
            await publisher.publish(DOC)
        ref = await publisher.publish(DOC)

        assert ref.cid.startswith('bafy')
        assert len(store.puts) == 2


# ── PinataClient ─────────────────────────────────────────────────────


class TestPinataRequest:
    @pytest.mark.asyncio
    async def test_pins_json_with_bearer_and_name(self):
        client, mock_http = _make_client(
            httpx.Response(200, json={'IpfsHash': 'bafyabc', 'PinSize': 10})
        )

        cid = await client.put(DOC.to_json_dict(), name='Research Scout')

        assert cid == 'bafyabc'
        call = mock_http.request.call_args
        assert call.args[0] == 'POST'
        assert call.args[1] == 'https://api.pinata.example/pinning/pinJSONToIPFS'
        assert call.kwargs['headers']['Authorization'] == 'Bearer test-pinata-jwt'
        assert call.kwargs['timeout'] == 5.0
        body = call.kwargs['json']
        assert body['pinataContent'] == DOC.to_json_dict()
        assert body['pinataMetadata'] == {'name': 'bonfire-research-scout'}

    def test_requires_jwt(self):
        with pytest.raises(ValueError, match='jwt'):
            PinataClient(jwt='')

    def test_pin_name_slug(self):
        assert pin_name('  My  Agent ') == 'bonfire-my-agent'


class TestPinataErrors:
    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self):
        client, _ = _make_client(side_effect=httpx.ReadTimeout('slow'))
        with pytest.raises(NetworkError, match='timed out'):
            await client.put({}, name='a')

    @pytest.mark.asyncio
    async def test_connection_error_is_network_error(self):
        client, _ = _make_client(side_effect=httpx.ConnectError('refused'))
        with pytest.raises(NetworkError) as exc_info:
            await client.put({}, name='a')
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize('status', [429, 500, 502, 503])
    async def test_retryable_statuses(self, status):
        client, _ = _make_client(httpx.Response(status, text='busy'))
        with pytest.raises(NetworkError):
            await client.put({}, name='a')

    @pytest.mark.asyncio
    async def test_402_is_quota(self):
        client, _ = _make_client(httpx.Response(402, text='Payment required'))
        with pytest.raises(QuotaExceeded) as exc_info:
            await client.put({}, name='a')
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_403_with_limit_message_is_quota(self):
        client, _ = _make_client(
            httpx.Response(403, json={'error': 'Pin limit reached for your plan'})
        )
        with pytest.raises(QuotaExceeded):
            await client.put({}, name='a')

    @pytest.mark.asyncio
    async def test_401_is_rejected(self):
        client, _ = _make_client(httpx.Response(401, text='Invalid JWT'))
        with pytest.raises(ContentRejected):
            await client.put({}, name='a')

    @pytest.mark.asyncio
    async def test_403_without_quota_hint_is_rejected(self):
        client, _ = _make_client(httpx.Response(403, text='Forbidden'))
        with pytest.raises(ContentRejected):
            await client.put({}, name='a')

    @pytest.mark.asyncio
    async def test_missing_cid_is_rejected(self):
        client, _ = _make_client(httpx.Response(200, json={'PinSize': 10}))
        with pytest.raises(ContentRejected, match='IpfsHash'):
            await client.put({}, name='a')

    @pytest.mark.asyncio
    async def test_non_json_body_is_rejected(self):
        client, _ = _make_client(httpx.Response(200, text='<html>'))
        with pytest.raises(ContentRejected):
            await client.put({}, name='a')
