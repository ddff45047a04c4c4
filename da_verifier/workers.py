"""
Worker pool for CPU-bound cryptography.

Signature recovery and receipt verification are offloaded to a fixed pool of
worker processes so they never stall the event loop. Work is handed over as a
plain request message and comes back as a plain response message; the
semaphore in front of the pool makes callers wait when every slot is taken
instead of queueing without bound.
"""

import asyncio
import logging
import os
from concurrent.futures import Executor, ProcessPoolExecutor
from enum import Enum
from typing import Any, Dict, Optional

from .signatures import extract_address, verify_receipt_signature

log = logging.getLogger(__name__)


class WorkerRequestType(Enum):
    EXTRACT_ADDRESS = "extract_address"
    VERIFY_RECEIPT_SIGNATURE = "verify_receipt_signature"


def handle_worker_message(message: Dict[str, Any]) -> Dict[str, Any]:
    """
    Worker-side entry point: run one request and return its response message.

    Errors are reported in the response instead of raised, so a bad payload
    never takes the worker down.
    """
    request_type = message.get("type")
    payload = message.get("payload")

    try:
        if request_type == WorkerRequestType.EXTRACT_ADDRESS.value:
            result = extract_address(payload)
        elif request_type == WorkerRequestType.VERIFY_RECEIPT_SIGNATURE.value:
            result = verify_receipt_signature(payload)
        else:
            return {"ok": False, "error": f"Unknown worker request: {request_type}"}
    except Exception as e:
        return {"ok": False, "error": f"{type(e).__name__}: {e}"}

    return {"ok": True, "result": result}


class WorkerError(Exception):
    """A worker reported a failure for a request."""


class WorkerPool:
    """Bounded request/response pool over a process executor."""

    def __init__(
        self,
        max_workers: Optional[int] = None,
        max_pending: Optional[int] = None,
        executor: Optional[Executor] = None,
    ):
        """
        Args:
            max_workers: Number of worker processes (default: CPU count)
            max_pending: Requests allowed in flight before callers wait
                (default: 2x workers)
            executor: Executor to use instead of a fresh ProcessPoolExecutor
        """
        self.max_workers = max_workers or os.cpu_count() or 1
        self.max_pending = max_pending or self.max_workers * 2
        self._executor = executor or ProcessPoolExecutor(max_workers=self.max_workers)
        self._slots = asyncio.Semaphore(self.max_pending)

    async def request(self, request_type: WorkerRequestType, payload: Any) -> Any:
        """Send one request to the pool and wait for its result."""
        message = {"type": request_type.value, "payload": payload}

        async with self._slots:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(self._executor, handle_worker_message, message)

        if not response.get("ok"):
            raise WorkerError(response.get("error", "worker failed"))
        return response["result"]

    async def extract_address(self, publication: Dict[str, Any]) -> str:
        return await self.request(WorkerRequestType.EXTRACT_ADDRESS, publication)

    async def verify_receipt_signature(self, response: Dict[str, Any]) -> bool:
        return await self.request(WorkerRequestType.VERIFY_RECEIPT_SIGNATURE, response)

    def shutdown(self):
        log.info("[...] Shutting down worker pool")
        self._executor.shutdown(wait=True)
