"""
Lens DA Verifier Node

Independent verifier for Lens data availability publications. Validates each
DA transaction by:
1. Checking the submitter and storage network receipt signatures
2. Checking the claimed block against the receipt timestamp
3. Replaying the publication against LensHub state at that block

Usage:
    da-verifier --tx-id <TX_ID>      # Check a specific DA transaction
    da-verifier --stats              # Show verification statistics
    da-verifier                      # Run the verifier node
    da-verifier --trusting           # Stream publications without verifying them
"""

from .checker import CheckOptions, DAProofChecker, VerificationContext
from .client import check_da_proof
from .environment import ChainConfig, Deployment, Environment
from .errors import BundlrTimeoutError, RpcError, ValidatorError, should_retry
from .indexing import TrustingIndexer, start_da_trusting_indexing
from .node import BlockCacheWatcher, VerifierNode, start_verifier_node
from .result import Verdict
from .store import VerificationStore

__version__ = "0.1.0"
__all__ = [
    "CheckOptions",
    "DAProofChecker",
    "VerificationContext",
    "check_da_proof",
    "ChainConfig",
    "Deployment",
    "Environment",
    "BundlrTimeoutError",
    "RpcError",
    "ValidatorError",
    "should_retry",
    "TrustingIndexer",
    "start_da_trusting_indexing",
    "BlockCacheWatcher",
    "VerifierNode",
    "start_verifier_node",
    "Verdict",
    "VerificationStore",
]
