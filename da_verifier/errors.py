"""
Validator error taxonomy.

Every check in the pipeline resolves to one of these kinds. The retryable set
covers infrastructure hiccups (storage network, chain node) and is the only
thing the batch pipeline re-enqueues; everything else is a terminal verdict.
"""

from enum import Enum


class ValidatorError(Enum):
    """Closed set of reasons a DA submission can fail verification."""
    NO_SIGNATURE_SUBMITTER = "NO_SIGNATURE_SUBMITTER"
    INVALID_SIGNATURE_SUBMITTER = "INVALID_SIGNATURE_SUBMITTER"
    TIMESTAMP_PROOF_INVALID_SIGNATURE = "TIMESTAMP_PROOF_INVALID_SIGNATURE"
    TIMESTAMP_PROOF_INVALID_TYPE = "TIMESTAMP_PROOF_INVALID_TYPE"
    TIMESTAMP_PROOF_INVALID_DA_ID = "TIMESTAMP_PROOF_INVALID_DA_ID"
    TIMESTAMP_PROOF_NOT_SUBMITTER = "TIMESTAMP_PROOF_NOT_SUBMITTER"
    CAN_NOT_CONNECT_TO_BUNDLR = "CAN_NOT_CONNECT_TO_BUNDLR"
    INVALID_TX_ID = "INVALID_TX_ID"
    INVALID_FORMATTED_TYPED_DATA = "INVALID_FORMATTED_TYPED_DATA"
    BLOCK_CANT_BE_READ_FROM_NODE = "BLOCK_CANT_BE_READ_FROM_NODE"
    DATA_CANT_BE_READ_FROM_NODE = "DATA_CANT_BE_READ_FROM_NODE"
    SIMULATION_NODE_COULD_NOT_RUN = "SIMULATION_NODE_COULD_NOT_RUN"
    SIMULATION_FAILED = "SIMULATION_FAILED"
    EVENT_MISMATCH = "EVENT_MISMATCH"
    INVALID_EVENT_TIMESTAMP = "INVALID_EVENT_TIMESTAMP"
    INVALID_TYPED_DATA_DEADLINE_TIMESTAMP = "INVALID_TYPED_DATA_DEADLINE_TIMESTAMP"
    GENERATED_PUBLICATION_ID_MISMATCH = "GENERATED_PUBLICATION_ID_MISMATCH"
    INVALID_POINTER_SET_NOT_NEEDED = "INVALID_POINTER_SET_NOT_NEEDED"
    POINTER_FAILED_VERIFICATION = "POINTER_FAILED_VERIFICATION"
    NOT_CLOSEST_BLOCK = "NOT_CLOSEST_BLOCK"
    PUBLICATION_NO_POINTER = "PUBLICATION_NO_POINTER"
    PUBLICATION_NONE_DA = "PUBLICATION_NONE_DA"
    PUBLICATION_NONCE_INVALID = "PUBLICATION_NONCE_INVALID"
    PUBLICATION_SIGNER_NOT_ALLOWED = "PUBLICATION_SIGNER_NOT_ALLOWED"
    CHAIN_SIGNATURE_ALREADY_USED = "CHAIN_SIGNATURE_ALREADY_USED"
    POTENTIAL_REORG = "POTENTIAL_REORG"
    PUBLICATION_NOT_RECOGNIZED = "PUBLICATION_NOT_RECOGNIZED"
    UNKNOWN = "UNKNOWN"


RETRYABLE_ERRORS = frozenset({
    ValidatorError.UNKNOWN,
    ValidatorError.CAN_NOT_CONNECT_TO_BUNDLR,
    ValidatorError.BLOCK_CANT_BE_READ_FROM_NODE,
    ValidatorError.DATA_CANT_BE_READ_FROM_NODE,
    ValidatorError.SIMULATION_NODE_COULD_NOT_RUN,
})


def should_retry(error: ValidatorError) -> bool:
    """True when the failure came from infrastructure rather than the payload."""
    return error in RETRYABLE_ERRORS


# ============================================================================
# Infrastructure exceptions
# ============================================================================

class BundlrTimeoutError(Exception):
    """The storage network did not answer within the request timeout."""


class RpcError(Exception):
    """The chain node failed to answer after all retries."""
