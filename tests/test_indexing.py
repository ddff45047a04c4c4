"""Tests for the trusting indexer."""

import pytest

from da_verifier.environment import Deployment, Environment
from da_verifier.errors import BundlrTimeoutError
from da_verifier.indexing import TrustingIndexer, start_da_trusting_indexing
from da_verifier.models import TransactionsPage

PUBLICATION = {"type": "POST_CREATED", "publicationId": "0x18-0x3a-DA-6534728f"}


@pytest.fixture
def indexer(bundlr):
    return TrustingIndexer(Environment.POLYGON, bundlr=bundlr, empty_page_delay=0, error_backoff=0)


@pytest.mark.asyncio
async def test_page_streamed_without_checks(indexer, bundlr):
    bundlr.get_data_availability_transactions.return_value = TransactionsPage(["tx-1", "tx-2"], "c1", True)
    bundlr.get_bulk_txs.return_value = {
        "success": [{"id": "tx-1", "data": PUBLICATION}],
        "failed": {"tx-2": "timeout"},
    }
    streamed = []
    indexer.subscribe(streamed.append)

    assert await indexer.index_page(None) == "c1"

    assert [(r.proof_tx_id, r.success, r.data_availability_result) for r in streamed] == [
        ("tx-1", True, PUBLICATION),
    ]
    bundlr.get_bulk_txs.assert_awaited_once_with(["tx-1", "tx-2"])
    assert bundlr.get_data_availability_transactions.await_args.args == (
        Environment.POLYGON, Deployment.PRODUCTION, None,
    )


@pytest.mark.asyncio
async def test_async_subscriber(indexer, bundlr):
    bundlr.get_data_availability_transactions.return_value = TransactionsPage(["tx-1"], "c1", False)
    bundlr.get_bulk_txs.return_value = {"success": [{"id": "tx-1", "data": PUBLICATION}], "failed": {}}
    streamed = []

    async def collect(result):
        streamed.append(result.proof_tx_id)

    indexer.subscribe(collect)
    await indexer.index_page(None)

    assert streamed == ["tx-1"]


@pytest.mark.asyncio
async def test_empty_page_keeps_cursor(indexer, bundlr):
    bundlr.get_data_availability_transactions.return_value = TransactionsPage([], None, False)

    assert await indexer.index_page("c5") == "c5"
    bundlr.get_bulk_txs.assert_not_awaited()


@pytest.mark.asyncio
async def test_loop_survives_errors_and_advances(indexer, bundlr, caplog):
    bundlr.get_data_availability_transactions.side_effect = [
        BundlrTimeoutError("down"),
        TransactionsPage(["tx-1"], "c1", True),
        TransactionsPage([], None, False),
    ]
    bundlr.get_bulk_txs.return_value = {"success": [{"id": "tx-1", "data": PUBLICATION}], "failed": {}}

    await indexer.run(max_iterations=3)

    cursors = [call.args[2] for call in bundlr.get_data_availability_transactions.await_args_list]
    assert cursors == [None, None, "c1"]
    assert "Error while checking for new submissions" in caplog.text


@pytest.mark.asyncio
async def test_start_trusting_indexing_closes_client(bundlr):
    bundlr.get_data_availability_transactions.return_value = TransactionsPage(["tx-1"], "c1", False)
    bundlr.get_bulk_txs.return_value = {"success": [{"id": "tx-1", "data": PUBLICATION}], "failed": {}}
    streamed = []

    indexer = await start_da_trusting_indexing(
        Environment.AMOY,
        streamed.append,
        Deployment.STAGING,
        max_iterations=1,
        bundlr=bundlr,
        empty_page_delay=0,
    )

    assert indexer.deployment == Deployment.STAGING
    assert [r.proof_tx_id for r in streamed] == ["tx-1"]
    bundlr.aclose.assert_awaited_once()
