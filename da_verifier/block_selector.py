"""
Closest-block selection.

A submission claims the block it was simulated against. The claim is checked
against the block before and after it: the claimed block must be the one whose
timestamp sits closest to (and not after) the storage receipt timestamp, or the
block right after that one, since block propagation between nodes can lag the
receipt by a few hundred milliseconds.
"""

from typing import List, Optional

from .errors import ValidatorError
from .models import BlockInfo


def unix_timestamp_to_ms(timestamp: float) -> float:
    return timestamp * 1000


def get_closest_block(blocks: List[BlockInfo], target_timestamp_ms: float) -> BlockInfo:
    """
    Pick the block closest to a target timestamp.

    Folds left from the first candidate. Candidates later than the target never
    replace the running pick; otherwise the one with the strictly smaller
    distance wins. When every candidate is after the target the first one is
    returned.

    Args:
        blocks: Candidate blocks, usually [n-1, n, n+1]
        target_timestamp_ms: Receipt timestamp in milliseconds

    Returns:
        The selected BlockInfo
    """
    if not blocks:
        raise ValueError("get_closest_block needs at least one block")

    closest = blocks[0]
    for block in blocks[1:]:
        block_ms = unix_timestamp_to_ms(block.timestamp)
        if block_ms > target_timestamp_ms:
            continue

        closest_delta = abs(unix_timestamp_to_ms(closest.timestamp) - target_timestamp_ms)
        if abs(block_ms - target_timestamp_ms) < closest_delta:
            closest = block

    return closest


def candidate_block_numbers(block_number: int) -> List[int]:
    return [block_number - 1, block_number, block_number + 1]


def validate_chosen_block(
    block_number: int,
    blocks: List[BlockInfo],
    target_timestamp_ms: float,
) -> Optional[ValidatorError]:
    """Accept the claimed block if it is the closest block or the one right after it."""
    closest = get_closest_block(blocks, target_timestamp_ms)

    if closest.number == block_number:
        return None

    # One block of propagation latency is tolerated
    if block_number == closest.number + 1:
        return None

    return ValidatorError.NOT_CLOSEST_BLOCK
