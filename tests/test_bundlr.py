"""Tests for the storage network client."""

import base64
import json

import httpx
import pytest

from da_verifier.bundlr import BULK_LIMIT, BundlrClient, decode_bulk_data
from da_verifier.environment import Deployment, Environment
from da_verifier.errors import BundlrTimeoutError


def encoded(data):
    return base64.b64encode(json.dumps(data).encode()).decode()


def client_for(handler):
    return BundlrClient(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_decode_bulk_data():
    assert decode_bulk_data(encoded({"a": 1})) == {"a": 1}


@pytest.mark.asyncio
async def test_get_by_id_reads_gateway():
    def handler(request):
        assert str(request.url) == "https://lens-gateway.bundlr.network/tx/abc/data"
        return httpx.Response(200, json={"type": "POST_CREATED"})

    async with client_for(handler) as bundlr:
        assert await bundlr.get_by_id("abc") == {"type": "POST_CREATED"}


@pytest.mark.asyncio
async def test_get_by_id_missing_or_not_json():
    responses = iter([httpx.Response(404), httpx.Response(200, text="not json")])

    async with client_for(lambda request: next(responses)) as bundlr:
        assert await bundlr.get_by_id("abc") is None
        assert await bundlr.get_by_id("abc") is None


@pytest.mark.asyncio
async def test_transport_error_raises_timeout():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    async with client_for(handler) as bundlr:
        with pytest.raises(BundlrTimeoutError):
            await bundlr.get_by_id("abc")


@pytest.mark.asyncio
async def test_owner_of_transaction():
    def handler(request):
        assert str(request.url) == "https://lens.bundlr.network/tx/abc"
        return httpx.Response(200, json={"id": "abc", "address": "0xsub"})

    async with client_for(handler) as bundlr:
        assert await bundlr.get_owner_of_transaction("abc") == "0xsub"


@pytest.mark.asyncio
async def test_bulk_fetch_chunks_and_decodes():
    chunks = []

    def handler(request):
        ids = json.loads(request.content)
        chunks.append(len(ids))
        return httpx.Response(200, json={
            "success": [{"id": tx_id, "address": "0xsub", "data": encoded({"id": tx_id})} for tx_id in ids],
            "failed": {},
        })

    tx_ids = [f"tx-{i}" for i in range(BULK_LIMIT + 5)]
    async with client_for(handler) as bundlr:
        result = await bundlr.get_bulk_txs(tx_ids)

    assert chunks == [BULK_LIMIT, 5]
    assert len(result["success"]) == BULK_LIMIT + 5
    assert result["success"][0] == {"id": "tx-0", "address": "0xsub", "data": {"id": "tx-0"}}


@pytest.mark.asyncio
async def test_transactions_page():
    def handler(request):
        body = json.loads(request.content)
        assert body["variables"]["owners"] == ["0xBe29464B9784a0d8956f29630d8bc4D7B5737435"]
        assert body["variables"]["limit"] == 1000
        assert body["variables"]["after"] == "c0"
        return httpx.Response(200, json={"data": {"transactions": {
            "edges": [
                {"node": {"id": "tx-1", "address": "0xsub"}, "cursor": "c1"},
                {"node": {"id": "tx-2", "address": "0xsub"}, "cursor": "c2"},
            ],
            "pageInfo": {"hasNextPage": True, "endCursor": "c2"},
        }}})

    async with client_for(handler) as bundlr:
        page = await bundlr.get_data_availability_transactions(
            Environment.POLYGON, Deployment.PRODUCTION, "c0"
        )

    assert page.ids == ["tx-1", "tx-2"]
    assert page.end_cursor == "c2"
    assert page.has_next_page


@pytest.mark.asyncio
async def test_transactions_page_without_data():
    async with client_for(lambda request: httpx.Response(200, json={"errors": []})) as bundlr:
        with pytest.raises(ValueError):
            await bundlr.get_data_availability_transactions(
                Environment.POLYGON, Deployment.PRODUCTION, None
            )
