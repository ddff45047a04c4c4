"""
Trusting indexer.

Follows the same submitter index as the verifier node but skips every check:
each publication is streamed to subscribers as a successful result as soon as
its blob is fetched. For consumers that already trust the submitters and only
want the publications fast.
"""

import asyncio
import logging
from typing import List, Optional

from .batch import Subscriber, stream_to_subscribers
from .bundlr import BundlrClient
from .environment import DEFAULT_DEPLOYMENT, Deployment, Environment
from .models import TxValidatedResult

log = logging.getLogger(__name__)

EMPTY_PAGE_DELAY = 0.1
ERROR_BACKOFF = 0.1


class TrustingIndexer:
    """Pages the DA index and streams unverified publications."""

    def __init__(
        self,
        environment: Environment,
        deployment: Deployment = DEFAULT_DEPLOYMENT,
        bundlr: Optional[BundlrClient] = None,
        empty_page_delay: float = EMPTY_PAGE_DELAY,
        error_backoff: float = ERROR_BACKOFF,
    ):
        self.environment = environment
        self.deployment = deployment
        self.bundlr = bundlr or BundlrClient()
        self.empty_page_delay = empty_page_delay
        self.error_backoff = error_backoff
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber):
        self._subscribers.append(subscriber)

    async def index_page(self, cursor: Optional[str]) -> Optional[str]:
        """
        Fetch one page of publications and stream them.

        Args:
            cursor: Pagination cursor from the previous page (None = start)

        Returns:
            The cursor to continue from

        Raises:
            BundlrTimeoutError: If the storage network cannot be reached
        """
        page = await self.bundlr.get_data_availability_transactions(
            self.environment, self.deployment, cursor
        )

        if not page.ids:
            log.debug("No new DA items found")
            await asyncio.sleep(self.empty_page_delay)
            return cursor

        log.info("[...] Found %d new submission(s)", len(page.ids))
        bulk = await self.bundlr.get_bulk_txs(page.ids)

        for entry in bulk["success"]:
            await stream_to_subscribers(self._subscribers, TxValidatedResult(
                proof_tx_id=entry["id"],
                success=True,
                data_availability_result=entry["data"],
            ))

        if bulk["failed"]:
            log.warning("[!] %d submission(s) could not be fetched", len(bulk["failed"]))

        return page.end_cursor or cursor

    async def run(self, max_iterations: Optional[int] = None):
        """
        Run the indexing loop. The cursor lives in memory only, so every run
        starts from the first transaction.

        Args:
            max_iterations: Maximum pages to process (None for infinite)
        """
        log.info("[OK] Starting trusting indexer (%s)", self.environment.value)

        cursor = None
        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            try:
                cursor = await self.index_page(cursor)
            except Exception as e:
                log.error("[!] Error while checking for new submissions: %s", e)
                await asyncio.sleep(self.error_backoff)
            iteration += 1

    async def close(self):
        await self.bundlr.aclose()


async def start_da_trusting_indexing(
    environment: Environment,
    stream: Subscriber,
    deployment: Deployment = DEFAULT_DEPLOYMENT,
    max_iterations: Optional[int] = None,
    **components,
) -> TrustingIndexer:
    """
    Stream every DA publication on ``environment`` to ``stream`` without verifying it.

    Args:
        environment: Chain whose submitters' uploads are followed
        stream: Callback (sync or async) receiving each publication as a result
        deployment: Submitter tier
        max_iterations: Maximum pages to process (None for infinite)
        **components: Collaborators passed through to TrustingIndexer

    Returns:
        The indexer, after the loop has finished
    """
    indexer = TrustingIndexer(environment, deployment, **components)
    indexer.subscribe(stream)
    try:
        await indexer.run(max_iterations=max_iterations)
    finally:
        await indexer.close()
    return indexer
