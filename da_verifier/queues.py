"""
Delay queue and failed-proof writer.

The retry path re-checks transactions that failed for infrastructure reasons;
the failed-proof path writes terminal failures to disk for inspection. Both
use the same queue: an item can be put back with a delay, and a handler
failure puts it back after ``retry_delay``. Processing is at-least-once,
which is safe because verdict writes are idempotent.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Set, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_DELAY = 30.0


class DelayQueue(Generic[T]):
    """Async queue that supports enqueueing with a delay."""

    def __init__(self, name: str, retry_delay: float = DEFAULT_RETRY_DELAY):
        self.name = name
        self.retry_delay = retry_delay
        self._queue: "asyncio.Queue[T]" = asyncio.Queue()
        self._timers: Set[asyncio.TimerHandle] = set()

    def __len__(self) -> int:
        return self._queue.qsize()

    @property
    def scheduled(self) -> int:
        """Items waiting for their delay to expire."""
        return len(self._timers)

    def put(self, item: T, delay: float = 0.0):
        """Enqueue now, or after ``delay`` seconds."""
        if delay <= 0:
            self._queue.put_nowait(item)
            return

        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def release():
            self._timers.discard(handle)
            self._queue.put_nowait(item)

        handle = loop.call_later(delay, release)
        self._timers.add(handle)

    async def get(self) -> T:
        return await self._queue.get()

    async def consume(self, handler: Callable[[T], Awaitable[Any]], max_items: Optional[int] = None):
        """
        Feed items to ``handler`` forever (or for ``max_items`` items).

        A handler exception re-enqueues the item after ``retry_delay``.
        """
        handled = 0
        while max_items is None or handled < max_items:
            item = await self.get()
            try:
                await handler(item)
            except Exception as e:
                log.error("[!] %s queue handler failed, retrying in %ss: %s", self.name, self.retry_delay, e)
                self.put(item, self.retry_delay)
            finally:
                self._queue.task_done()
                handled += 1

    def cancel_scheduled(self):
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()


class FailedProofWriter:
    """Writes terminal failures to ``<root>/<reason>/<txId>.json``."""

    def __init__(self, root: str = None):
        self.root = Path(root or os.getenv("FAILED_PROOFS_DIR", "failed-proofs"))

    def path_for(self, tx_id: str, reason: str) -> Path:
        return self.root / reason / f"{tx_id}.json"

    def write(self, tx_id: str, reason: str, record: Dict[str, Any]):
        path = self.path_for(tx_id, reason)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record, indent=2))

    async def handle(self, item: Dict[str, Any]):
        """Queue handler for ``{"txId", "reason", "record"}`` items."""
        self.write(item["txId"], item["reason"], item["record"])
        log.debug("failed proof written for %s (%s)", item["txId"], item["reason"])
