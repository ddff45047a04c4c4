"""
Verifier node.

Pages through every DA transaction the trusted submitters have uploaded,
oldest first, and checks each page as one batch. The pagination cursor is
saved after every page, so a restarted node carries on where it stopped
(``resync`` starts over from the beginning). Retryable failures come back
through the retry queue; terminal failures are written to disk. With
``cache_blocks`` set, a side task keeps the newest block cached as well.
"""

import asyncio
import logging
from typing import List, Optional

from .batch import DEFAULT_CHECK_TIMEOUT, DEFAULT_CONCURRENCY, BatchProcessor, Subscriber
from .bundlr import BundlrClient
from .checker import CheckOptions, DAProofChecker, VerificationContext
from .environment import ChainConfig
from .errors import BundlrTimeoutError, RpcError
from .evm import EthereumClient
from .gateway import NodeProofGateway, SignatureProofVerifier
from .lens_hub import LensHubGateway
from .models import BlockInfo
from .queues import DelayQueue, FailedProofWriter
from .store import VerificationStore
from .workers import WorkerPool

log = logging.getLogger(__name__)

EMPTY_PAGE_DELAY = 0.1
ERROR_BACKOFF = 5.0
BLOCK_POLL_INTERVAL = 0.5


def build_node_context(
    chain_config: ChainConfig,
    store: VerificationStore,
    bundlr: BundlrClient,
    ethereum: EthereumClient,
    pool: Optional[WorkerPool] = None,
) -> VerificationContext:
    """Wire the cached gateway and pooled verifier the node checks with."""
    return VerificationContext(
        chain_config=chain_config,
        gateway=NodeProofGateway(store, bundlr, ethereum),
        verifier=SignatureProofVerifier(bundlr, pool),
        lens_hub=LensHubGateway(ethereum, chain_config.lens_hub),
    )


class BlockCacheWatcher:
    """Polls the chain head and saves every new block to the store ahead of the checks that need it."""

    def __init__(
        self,
        ethereum: EthereumClient,
        store: VerificationStore,
        poll_interval: float = BLOCK_POLL_INTERVAL,
    ):
        self.ethereum = ethereum
        self.store = store
        self.poll_interval = poll_interval
        self.last_block_number = 0

    async def poll_once(self) -> Optional[BlockInfo]:
        """Cache the latest block if it is newer than the last one seen; return it if so."""
        block = await self.ethereum.get_latest_block()
        if block.number <= self.last_block_number:
            return None

        self.last_block_number = block.number
        await asyncio.to_thread(self.store.save_block, block)
        return block

    async def run(self, max_iterations: Optional[int] = None):
        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            try:
                await self.poll_once()
            except RpcError as e:
                log.warning("[!] Latest block unavailable, trying again: %s", e)
            await asyncio.sleep(self.poll_interval)
            iteration += 1


class VerifierNode:
    """Long-running ingestion loop over the DA transaction index."""

    def __init__(
        self,
        chain_config: ChainConfig,
        options: Optional[CheckOptions] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        check_timeout: float = DEFAULT_CHECK_TIMEOUT,
        store: Optional[VerificationStore] = None,
        bundlr: Optional[BundlrClient] = None,
        ethereum: Optional[EthereumClient] = None,
        pool: Optional[WorkerPool] = None,
        failed_writer: Optional[FailedProofWriter] = None,
        empty_page_delay: float = EMPTY_PAGE_DELAY,
        error_backoff: float = ERROR_BACKOFF,
        cache_blocks: bool = False,
    ):
        """
        Args:
            chain_config: Environment, deployment and chain node URL
            options: Check switches applied to every transaction
            concurrency: Maximum checks in flight per page
            check_timeout: Seconds before a single check is abandoned
            store: Verdict store (default: SQLite under CACHE_DIR)
            bundlr: Storage network client
            ethereum: Chain node client (default: built from chain_config)
            pool: Worker pool for signature crypto (default: one per CPU)
            failed_writer: Writer for terminal failures
            empty_page_delay: Seconds to wait when no new transactions exist
            error_backoff: Seconds to wait after a failed page fetch
            cache_blocks: Also poll the chain head and pre-cache each new block
        """
        self.chain_config = chain_config
        self.options = options or CheckOptions()
        self.store = store or VerificationStore()
        self.bundlr = bundlr or BundlrClient()
        self.ethereum = ethereum or EthereumClient(chain_config.node_url)
        self._owns_pool = pool is None
        self.pool = pool or WorkerPool()
        self.failed_writer = failed_writer or FailedProofWriter()
        self.empty_page_delay = empty_page_delay
        self.error_backoff = error_backoff
        self.block_watcher = BlockCacheWatcher(self.ethereum, self.store) if cache_blocks else None

        self.retry_queue: DelayQueue[str] = DelayQueue("retry")
        self.failed_queue: DelayQueue[dict] = DelayQueue("failed-proofs")

        context = build_node_context(chain_config, self.store, self.bundlr, self.ethereum, self.pool)
        self.batch = BatchProcessor(
            DAProofChecker(context),
            self.store,
            self.bundlr,
            concurrency=concurrency,
            check_timeout=check_timeout,
            retry_queue=self.retry_queue,
            failed_queue=self.failed_queue,
        )

    def subscribe(self, subscriber: Subscriber):
        self.batch.subscribe(subscriber)

    async def sync_page(self, cursor: Optional[str]) -> Optional[str]:
        """
        Fetch and check one page of transactions.

        Args:
            cursor: Pagination cursor from the previous page (None = start)

        Returns:
            The cursor to continue from
        """
        page = await self.bundlr.get_data_availability_transactions(
            self.chain_config.environment,
            self.chain_config.deployment,
            cursor,
        )

        if not page.ids:
            await asyncio.sleep(self.empty_page_delay)
            return cursor

        log.info("[...] Checking %d transaction(s)", len(page.ids))
        await self.batch.check_da_proofs_by_ids(page.ids, self.options)

        if page.end_cursor:
            await asyncio.to_thread(self.store.save_end_cursor, page.end_cursor)
            return page.end_cursor
        return cursor

    async def run(self, resync: bool = False, max_iterations: Optional[int] = None):
        """
        Run the ingestion loop.

        Args:
            resync: Ignore the saved cursor and start from the first transaction
            max_iterations: Maximum pages to process (None for infinite)
        """
        cursor = None if resync else self.store.get_last_end_cursor()
        stats = self.store.get_stats()

        log.info("[OK] Starting verifier node")
        log.info("    Environment: %s (chain %d)", self.chain_config.environment.value, self.chain_config.chain_id)
        log.info("    Deployment: %s", self.chain_config.deployment.value)
        log.info("    Store: %s", self.store.db_path)
        log.info("    Cursor: %s", cursor or "(start)")
        log.info("    Previously verified: %d (%d passed)", stats["total_verified"], stats["passed"])

        consumers: List[asyncio.Task] = [
            asyncio.create_task(self.retry_queue.consume(self.batch.retry)),
            asyncio.create_task(self.failed_queue.consume(self.failed_writer.handle)),
        ]
        if self.block_watcher is not None:
            consumers.append(asyncio.create_task(self.block_watcher.run()))

        iteration = 0
        try:
            while max_iterations is None or iteration < max_iterations:
                try:
                    cursor = await self.sync_page(cursor)
                except BundlrTimeoutError as e:
                    log.error("[!] Storage network unreachable: %s", e)
                    await asyncio.sleep(self.error_backoff)
                except Exception as e:
                    log.error("[!] Loop error: %s", e, exc_info=True)
                    await asyncio.sleep(self.error_backoff)
                iteration += 1
        finally:
            for task in consumers:
                task.cancel()
            await asyncio.gather(*consumers, return_exceptions=True)
            self.retry_queue.cancel_scheduled()

    async def close(self):
        await self.bundlr.aclose()
        if self._owns_pool:
            self.pool.shutdown()


async def start_verifier_node(
    chain_config: ChainConfig,
    options: Optional[CheckOptions] = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    resync: bool = False,
    max_iterations: Optional[int] = None,
    **components,
) -> VerifierNode:
    """
    Start a verifier node and run it until cancelled (or ``max_iterations``).

    Args:
        chain_config: Environment, deployment and chain node URL
        options: Check switches applied to every transaction
        concurrency: Maximum checks in flight per page
        resync: Start from the first transaction instead of the saved cursor
        max_iterations: Maximum pages to process (None for infinite)
        **components: Collaborators passed through to VerifierNode

    Returns:
        The node, after the loop has finished
    """
    node = VerifierNode(chain_config, options=options, concurrency=concurrency, **components)
    try:
        await node.run(resync=resync, max_iterations=max_iterations)
    finally:
        await node.close()
    return node
