"""Tests for the crypto worker pool."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from da_verifier.workers import WorkerError, WorkerPool, WorkerRequestType, handle_worker_message

from conftest import build_comment_v1, build_receipt


def test_handle_unknown_request():
    response = handle_worker_message({"type": "nope", "payload": None})
    assert not response["ok"]
    assert "Unknown worker request" in response["error"]


def test_handle_reports_errors_instead_of_raising():
    response = handle_worker_message({"type": "extract_address", "payload": {"signature": "0x00"}})
    assert not response["ok"]


def test_handle_receipt_request(rsa_key):
    response = handle_worker_message({
        "type": WorkerRequestType.VERIFY_RECEIPT_SIGNATURE.value,
        "payload": build_receipt(rsa_key),
    })
    assert response == {"ok": True, "result": True}


@pytest.fixture
def pool():
    pool = WorkerPool(max_workers=2, executor=ThreadPoolExecutor(max_workers=2))
    yield pool
    pool.shutdown()


def test_pending_defaults_to_twice_workers(pool):
    assert pool.max_pending == 4


@pytest.mark.asyncio
async def test_pool_extracts_address(pool, submitter, profile_owner, rsa_key):
    publication = build_comment_v1(submitter, profile_owner, rsa_key)
    assert await pool.extract_address(publication) == submitter.address


@pytest.mark.asyncio
async def test_pool_verifies_receipt(pool, rsa_key):
    assert await pool.verify_receipt_signature(build_receipt(rsa_key))


@pytest.mark.asyncio
async def test_pool_raises_worker_error(pool):
    with pytest.raises(WorkerError):
        await pool.extract_address({"signature": "0x00"})
