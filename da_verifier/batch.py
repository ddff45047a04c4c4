"""
Batch processor.

Checks many DA transactions at once under a fixed concurrency cap. Each check
races a wall-clock timeout; a check that runs out of time becomes UNKNOWN (and
so a retry candidate) without holding up the rest of the batch. Every verdict
is persisted before it is streamed to subscribers, then routed: retryable
failures to the retry queue, terminal failures to the failed-proof queue.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .bundlr import BundlrClient
from .checker import CheckOptions, DAProofChecker
from .errors import ValidatorError, should_retry
from .models import BatchItem, DAPublication, TxValidatedResult
from .queues import DEFAULT_RETRY_DELAY, DelayQueue
from .result import Verdict
from .store import VerificationStore

log = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 100
DEFAULT_CHECK_TIMEOUT = 10.0

Subscriber = Callable[[TxValidatedResult], Any]


async def stream_to_subscribers(subscribers: List[Subscriber], result: TxValidatedResult):
    """Hand a result to every subscriber (sync or async); one failing subscriber never stops the rest."""
    for subscriber in subscribers:
        try:
            outcome = subscriber(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            log.error("[!] Subscriber failed for %s: %s", result.proof_tx_id, e)


def format_event_date(publication: Optional[Dict[str, Any]]) -> str:
    timestamp = ((publication or {}).get("event") or {}).get("timestamp")
    if timestamp is None:
        return "unknown"
    return datetime.fromtimestamp(int(timestamp), timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


class BatchProcessor:
    """Bounded concurrent verification of DA transactions."""

    def __init__(
        self,
        checker: DAProofChecker,
        store: VerificationStore,
        bundlr: BundlrClient,
        concurrency: int = DEFAULT_CONCURRENCY,
        check_timeout: float = DEFAULT_CHECK_TIMEOUT,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        retry_queue: Optional[DelayQueue] = None,
        failed_queue: Optional[DelayQueue] = None,
    ):
        """
        Args:
            checker: Proof checker bound to a verification context
            store: Store verdicts and blob mirrors are written to
            bundlr: Storage network client for bulk fetches
            concurrency: Maximum checks in flight
            check_timeout: Seconds before a single check is abandoned
            retry_delay: Seconds before a retryable failure is re-checked
            retry_queue: Queue of tx ids to re-check
            failed_queue: Queue of terminal failure records
        """
        self.checker = checker
        self.store = store
        self.bundlr = bundlr
        self.concurrency = concurrency
        self.check_timeout = check_timeout
        self.retry_delay = retry_delay
        self.retry_queue = retry_queue
        self.failed_queue = failed_queue
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber):
        """Register a callback (sync or async) for every persisted verdict."""
        self._subscribers.append(subscriber)

    async def _stream(self, result: TxValidatedResult):
        await stream_to_subscribers(self._subscribers, result)

    # ------------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------------

    async def check_da_proofs_by_ids(
        self,
        tx_ids: List[str],
        options: Optional[CheckOptions] = None,
        retry_attempt: bool = False,
    ) -> List[TxValidatedResult]:
        """Bulk-fetch blobs for ``tx_ids`` and check them all."""
        if not tx_ids:
            return []

        bulk = await self.bundlr.get_bulk_txs(tx_ids)
        fetched = {entry["id"]: entry for entry in bulk["success"]}

        proof_ids = {
            tx_id: ((entry["data"].get("timestampProofs") or {}).get("response") or {}).get("id")
            for tx_id, entry in fetched.items()
        }
        proofs_bulk = await self.bundlr.get_bulk_txs([pid for pid in proof_ids.values() if pid])
        proofs = {entry["id"]: entry["data"] for entry in proofs_bulk["success"]}

        items = []
        for tx_id in tx_ids:
            entry = fetched.get(tx_id)
            if entry is None:
                items.append(BatchItem(id=tx_id, address=None, publication=None))
                continue
            items.append(BatchItem(
                id=tx_id,
                address=entry["address"],
                publication=entry["data"],
                timestamp_proofs=proofs.get(proof_ids[tx_id]),
            ))

        return await self.check_da_proofs_batch(items, options, retry_attempt=retry_attempt)

    async def check_da_proofs_batch(
        self,
        items: List[BatchItem],
        options: Optional[CheckOptions] = None,
        retry_attempt: bool = False,
    ) -> List[TxValidatedResult]:
        """Check pre-fetched items under the concurrency cap."""
        options = options or CheckOptions()
        semaphore = asyncio.Semaphore(self.concurrency)

        await asyncio.to_thread(self._save_blobs, items)

        return list(await asyncio.gather(
            *(self._check_item(item, options, semaphore, retry_attempt) for item in items)
        ))

    def _save_blobs(self, items: List[BatchItem]):
        for item in items:
            if item.publication is not None:
                self.store.save_tx_da_metadata(item.id, item.publication)
            if item.timestamp_proofs is not None:
                self.store.save_tx_timestamp_proofs_metadata(item.id, item.timestamp_proofs)

    async def retry(self, tx_id: str) -> TxValidatedResult:
        """Retry queue handler: re-check one tx with the cache bypassed."""
        results = await self.check_da_proofs_by_ids(
            [tx_id], CheckOptions(by_pass_db=True), retry_attempt=True
        )
        return results[0]

    # ------------------------------------------------------------------------
    # Per item
    # ------------------------------------------------------------------------

    async def _run_check(self, item: BatchItem, options: CheckOptions) -> Verdict:
        # Missing blobs fall back to the single-tx path, which fetches them itself
        if item.publication is None or item.timestamp_proofs is None:
            return await self.checker.check_da_proof(item.id, options)

        return await self.checker.check_da_proof_with_metadata(
            item.id,
            item.publication,
            item.timestamp_proofs,
            item.address,
            options,
        )

    async def _check_item(
        self,
        item: BatchItem,
        options: CheckOptions,
        semaphore: asyncio.Semaphore,
        retry_attempt: bool,
    ) -> TxValidatedResult:
        extra_error_info = None

        async with semaphore:
            try:
                verdict = await asyncio.wait_for(self._run_check(item, options), self.check_timeout)
            except asyncio.TimeoutError:
                extra_error_info = f"check timed out after {self.check_timeout}s"
                verdict = Verdict.failure(ValidatorError.UNKNOWN, self._context_for(item))
            except Exception as e:
                extra_error_info = f"{type(e).__name__}: {e}"
                verdict = Verdict.failure(ValidatorError.UNKNOWN, self._context_for(item))

        result = self._to_result(item, verdict, extra_error_info)

        await asyncio.to_thread(self.store.save_tx_result, result)
        await self._stream(result)
        self._log_status(result, retry_attempt)
        await self._route(item, result)

        return result

    @staticmethod
    def _context_for(item: BatchItem) -> Optional[DAPublication]:
        return DAPublication(item.publication) if item.publication is not None else None

    @staticmethod
    def _to_result(item: BatchItem, verdict: Verdict, extra_error_info: Optional[str]) -> TxValidatedResult:
        publication = verdict.publication.raw if verdict.publication is not None else item.publication
        return TxValidatedResult(
            proof_tx_id=item.id,
            success=verdict.is_success,
            data_availability_result=publication,
            failure_reason=verdict.error.value if verdict.is_failure else None,
            extra_error_info=extra_error_info,
        )

    def _log_status(self, result: TxValidatedResult, retry_attempt: bool):
        prefix = "retry attempt " if retry_attempt else ""
        date = format_event_date(result.data_availability_result)

        if result.success:
            log.info("LENS VERIFICATION NODE - %stx at - %s - %s - OK", prefix, date, result.proof_tx_id)
            return

        if should_retry(ValidatorError(result.failure_reason)):
            log.debug("%s queued for retry (%s)", result.proof_tx_id, result.failure_reason)
            return

        log.warning(
            "LENS VERIFICATION NODE - %stx at - %s - %s - FAILED - %s",
            prefix, date, result.proof_tx_id, result.failure_reason,
        )

    async def _route(self, item: BatchItem, result: TxValidatedResult):
        if result.success:
            return

        if should_retry(ValidatorError(result.failure_reason)):
            if self.retry_queue is not None:
                self.retry_queue.put(result.proof_tx_id, self.retry_delay)
            return

        await asyncio.to_thread(
            self.store.save_failed_transaction, result.proof_tx_id, result.failure_reason, item.address
        )
        if self.failed_queue is not None:
            self.failed_queue.put({
                "txId": result.proof_tx_id,
                "reason": result.failure_reason,
                "record": result.to_dict(),
            })
