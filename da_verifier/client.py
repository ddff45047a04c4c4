"""
Lightweight client.

Checks a single DA transaction without a local store or worker pool: every
blob and block is fetched upstream and crypto runs inline. Use this from
applications that want to verify a publication on demand.
"""

from typing import Optional

from .bundlr import BundlrClient
from .checker import CheckOptions, DAProofChecker, VerificationContext
from .environment import ChainConfig
from .evm import EthereumClient
from .gateway import ClientProofGateway, SignatureProofVerifier
from .lens_hub import LensHubGateway
from .result import Verdict


def build_client_context(
    chain_config: ChainConfig,
    bundlr: BundlrClient,
    ethereum: Optional[EthereumClient] = None,
) -> VerificationContext:
    ethereum = ethereum or EthereumClient(chain_config.node_url)
    return VerificationContext(
        chain_config=chain_config,
        gateway=ClientProofGateway(bundlr, ethereum),
        verifier=SignatureProofVerifier(bundlr),
        lens_hub=LensHubGateway(ethereum, chain_config.lens_hub),
    )


async def check_da_proof(
    tx_id: str,
    chain_config: ChainConfig,
    options: Optional[CheckOptions] = None,
) -> Verdict:
    """
    Check one DA transaction.

    Args:
        tx_id: Storage transaction id, optionally ``ar://``-prefixed
        chain_config: Environment, deployment and chain node URL
        options: Pointer verification switch (the cache switch has no effect here)

    Returns:
        Verdict with the publication on success, or the error kind on failure
    """
    async with BundlrClient() as bundlr:
        checker = DAProofChecker(build_client_context(chain_config, bundlr))
        return await checker.check_da_proof(tx_id, options)
