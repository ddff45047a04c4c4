"""
Gateway and verifier ports used by the proof checker.

The checker only talks to these two interfaces. The node wires in a cached
gateway backed by the SQLite store and a verifier that runs crypto in the
worker pool; the lightweight client wires in an uncached gateway and inline
crypto. Both satisfy the same contract.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .bundlr import BundlrClient
from .environment import Deployment, Environment, is_valid_submitter
from .evm import EthereumClient
from .models import BlockInfo, TxValidatedResult
from .signatures import extract_address, verify_receipt_signature
from .store import VerificationStore
from .workers import WorkerPool

log = logging.getLogger(__name__)


# ============================================================================
# Ports
# ============================================================================

class DAProofGateway(ABC):
    """Data access for the checker: blobs, blocks, cached verdicts."""

    @abstractmethod
    async def get_da_publication(self, tx_id: str) -> Optional[Dict[str, Any]]:
        """Publication blob, None if missing. Raises BundlrTimeoutError."""

    @abstractmethod
    async def get_timestamp_proofs(self, timestamp_id: str, tx_id: str) -> Optional[Dict[str, Any]]:
        """Timestamp proof blob, None if missing. Raises BundlrTimeoutError."""

    @abstractmethod
    async def get_block_range(self, block_numbers: List[int]) -> List[BlockInfo]:
        """Blocks in the given order. Raises RpcError."""

    @abstractmethod
    async def get_tx_result_from_cache(self, tx_id: str) -> Optional[TxValidatedResult]:
        ...

    @abstractmethod
    async def has_signature_been_used_before(self, signature: str, tx_id: Optional[str] = None) -> bool:
        """True if a tx other than ``tx_id`` already passed with this chain signature."""

    @abstractmethod
    async def save_tx_result(self, result: TxValidatedResult):
        """Persist a settled verdict under ``tx:<proofTxId>``."""


class DAProofVerifier(ABC):
    """Cryptographic and provenance checks for the checker."""

    @abstractmethod
    async def extract_address(self, publication: Dict[str, Any]) -> Optional[str]:
        """Signer of the publication payload, None if the signature is unrecoverable."""

    @abstractmethod
    async def verify_timestamp_signature(self, publication: Dict[str, Any]) -> bool:
        ...

    @abstractmethod
    async def verify_transaction_submitter(
        self,
        environment: Environment,
        tx_id: str,
        deployment: Deployment,
    ) -> bool:
        """True if an allow-listed submitter uploaded ``tx_id``. Raises BundlrTimeoutError."""


# ============================================================================
# Implementations
# ============================================================================

class ClientProofGateway(DAProofGateway):
    """Uncached gateway: every lookup goes upstream, nothing is ever a replay."""

    def __init__(self, bundlr: BundlrClient, ethereum: EthereumClient):
        self.bundlr = bundlr
        self.ethereum = ethereum

    async def get_da_publication(self, tx_id: str) -> Optional[Dict[str, Any]]:
        return await self.bundlr.get_by_id(tx_id)

    async def get_timestamp_proofs(self, timestamp_id: str, tx_id: str) -> Optional[Dict[str, Any]]:
        return await self.bundlr.get_by_id(timestamp_id)

    async def get_block_range(self, block_numbers: List[int]) -> List[BlockInfo]:
        return list(await asyncio.gather(
            *(self.ethereum.get_block(number) for number in block_numbers)
        ))

    async def get_tx_result_from_cache(self, tx_id: str) -> Optional[TxValidatedResult]:
        return None

    async def has_signature_been_used_before(self, signature: str, tx_id: Optional[str] = None) -> bool:
        return False

    async def save_tx_result(self, result: TxValidatedResult):
        pass


class NodeProofGateway(ClientProofGateway):
    """
    Gateway that reads and writes through the node's persistent store.

    SQLite calls run in worker threads so the event loop only ever waits on
    network I/O.
    """

    def __init__(self, store: VerificationStore, bundlr: BundlrClient, ethereum: EthereumClient):
        super().__init__(bundlr, ethereum)
        self.store = store

    async def get_da_publication(self, tx_id: str) -> Optional[Dict[str, Any]]:
        cached = await asyncio.to_thread(self.store.get_tx_da_metadata, tx_id)
        if cached is not None:
            return cached
        return await super().get_da_publication(tx_id)

    async def get_timestamp_proofs(self, timestamp_id: str, tx_id: str) -> Optional[Dict[str, Any]]:
        cached = await asyncio.to_thread(self.store.get_tx_timestamp_proofs_metadata, tx_id)
        if cached is not None:
            return cached
        return await super().get_timestamp_proofs(timestamp_id, tx_id)

    async def _get_block(self, block_number: int) -> BlockInfo:
        cached = await asyncio.to_thread(self.store.get_block, block_number)
        if cached is not None:
            return cached

        block = await self.ethereum.get_block(block_number)
        await asyncio.to_thread(self.store.save_block, block)
        return block

    async def get_block_range(self, block_numbers: List[int]) -> List[BlockInfo]:
        return list(await asyncio.gather(*(self._get_block(n) for n in block_numbers)))

    async def get_tx_result_from_cache(self, tx_id: str) -> Optional[TxValidatedResult]:
        return await asyncio.to_thread(self.store.get_tx_result, tx_id)

    async def has_signature_been_used_before(self, signature: str, tx_id: Optional[str] = None) -> bool:
        return await asyncio.to_thread(self.store.has_signature_been_used, signature, tx_id)

    async def save_tx_result(self, result: TxValidatedResult):
        await asyncio.to_thread(self.store.save_tx_result, result)


class SignatureProofVerifier(DAProofVerifier):
    """Runs crypto in the worker pool when one is given, inline otherwise."""

    def __init__(self, bundlr: BundlrClient, pool: Optional[WorkerPool] = None):
        self.bundlr = bundlr
        self.pool = pool

    async def extract_address(self, publication: Dict[str, Any]) -> Optional[str]:
        try:
            if self.pool:
                return await self.pool.extract_address(publication)
            return extract_address(publication)
        except Exception as e:
            log.debug("submitter signature not recoverable: %s", e)
            return None

    async def verify_timestamp_signature(self, publication: Dict[str, Any]) -> bool:
        response = (publication.get("timestampProofs") or {}).get("response") or {}
        if self.pool:
            return await self.pool.verify_receipt_signature(response)
        return verify_receipt_signature(response)

    async def verify_transaction_submitter(
        self,
        environment: Environment,
        tx_id: str,
        deployment: Deployment,
    ) -> bool:
        owner = await self.bundlr.get_owner_of_transaction(tx_id)
        return is_valid_submitter(environment, owner, deployment)
