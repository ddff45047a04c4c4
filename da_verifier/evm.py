"""
Chain node access.

Thin async JSON-RPC layer over web3: read-only calls at a historical block,
block lookups by number or hash, and Multicall3 batched reads. Every call is
retried with a per-attempt timeout; when retries run out an RpcError is raised
and the verifiers map it to the matching error kind.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from eth_abi import decode, encode
from web3 import AsyncWeb3, Web3
from web3.exceptions import BlockNotFound

from .errors import RpcError
from .models import BlockInfo

log = logging.getLogger(__name__)

MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

DEFAULT_RPC_TIMEOUT = 5.0
DEFAULT_MAX_RETRIES = 10
DEFAULT_RETRY_DELAY = 0.1


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256 over a canonical function signature."""
    return bytes(Web3.keccak(text=signature)[:4])


def encode_call(signature: str, arg_types: Sequence[str], args: Sequence[Any]) -> bytes:
    """ABI-encode a function call, e.g. ``encode_call("ownerOf(uint256)", ["uint256"], [24])``."""
    return function_selector(signature) + encode(list(arg_types), list(args))


async def retry_with_timeout(
    fn: Callable[[], Awaitable[Any]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    delay: float = DEFAULT_RETRY_DELAY,
    timeout: float = DEFAULT_RPC_TIMEOUT,
) -> Any:
    """
    Run an async call with a timeout per attempt, retrying on any error.

    Raises:
        RpcError: After ``max_retries`` failed attempts
    """
    last_error: Optional[BaseException] = None

    for attempt in range(max_retries):
        try:
            return await asyncio.wait_for(fn(), timeout)
        except Exception as e:
            last_error = e
            log.debug("RPC attempt %d/%d failed: %s", attempt + 1, max_retries, e)
            if attempt < max_retries - 1:
                await asyncio.sleep(delay)

    raise RpcError(f"RPC failed after {max_retries} attempts: {last_error}") from last_error


class EthereumClient:
    """Async read-only client for one chain node."""

    def __init__(
        self,
        node_url: str,
        timeout: float = DEFAULT_RPC_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        web3: Optional[AsyncWeb3] = None,
    ):
        self.node_url = node_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.web3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(node_url))

    async def _retry(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        return await retry_with_timeout(
            fn,
            max_retries=self.max_retries,
            delay=self.retry_delay,
            timeout=self.timeout,
        )

    async def call(self, to: str, data: bytes, block_number: int) -> bytes:
        """``eth_call`` against a contract at a historical block."""
        tx = {"to": Web3.to_checksum_address(to), "data": Web3.to_hex(data)}
        result = await self._retry(
            lambda: self.web3.eth.call(tx, block_identifier=block_number)
        )
        return bytes(result)

    async def get_block(self, block_number: int) -> BlockInfo:
        """``eth_getBlockByNumber`` reduced to number and timestamp."""
        block = await self._retry(lambda: self.web3.eth.get_block(block_number))
        return BlockInfo(number=int(block["number"]), timestamp=int(block["timestamp"]))

    async def get_latest_block(self) -> BlockInfo:
        block = await self._retry(lambda: self.web3.eth.get_block("latest"))
        return BlockInfo(number=int(block["number"]), timestamp=int(block["timestamp"]))

    async def block_hash_exists(self, block_hash: str) -> bool:
        """``eth_getBlockByHash``: False once the hash no longer resolves (reorged away)."""
        async def lookup():
            try:
                return await self.web3.eth.get_block(block_hash)
            except BlockNotFound:
                return None

        return await self._retry(lookup) is not None

    async def multicall(
        self,
        calls: List[Tuple[str, bytes]],
        block_number: int,
    ) -> List[Tuple[bool, bytes]]:
        """
        Batch read-only calls through Multicall3 ``tryBlockAndAggregate``.

        Args:
            calls: (target address, calldata) pairs
            block_number: Block to read state at

        Returns:
            (success, returnData) per call, in order
        """
        data = encode_call(
            "tryBlockAndAggregate(bool,(address,bytes)[])",
            ["bool", "(address,bytes)[]"],
            [True, [(Web3.to_checksum_address(target), calldata) for target, calldata in calls]],
        )
        raw = await self.call(MULTICALL3_ADDRESS, data, block_number)
        _, _, results = decode(["uint256", "bytes32", "(bool,bytes)[]"], raw)
        return [(bool(success), bytes(return_data)) for success, return_data in results]
