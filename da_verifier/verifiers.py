"""
Publication verifiers.

A single PublicationVerifier covers every variant. The variant is the
(action, schema version) pair resolved when the publication was wrapped, and
it selects which event fields must mirror the signed typed data:

    PostV1, PostV2, CommentV1, CommentV2, MirrorV1, MirrorV2, QuoteV2

Posts are checked by simulating ``postWithSig`` at the claimed block. Comments,
mirrors and quotes are checked by recovering the EIP-712 signer and reading
the profile's nonce, publication count and delegates at that block.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .errors import RpcError, ValidatorError
from .lens_hub import (
    LensHubGateway,
    encode_post_simulation_v1,
    encode_post_simulation_v2,
    to_int,
)
from .models import (
    EMPTY_BYTE,
    ActionType,
    DAPublication,
    PointerType,
    SchemaVersion,
)
from .signatures import recover_typed_data_signer, split_signature

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventCheck:
    """
    How a variant's emitted event must relate to its typed data.

    Attributes:
        matching: (typed value key, event key) pairs that must be equal; event
            keys are read from the ``*Params`` struct for V2
        empty_event: Top-level event keys that must be empty bytes
        empty_value: Typed value keys that must be empty bytes
        empty_event_lists: Top-level event keys that must be empty lists
    """
    matching: Tuple[Tuple[str, str], ...]
    empty_event: Tuple[str, ...] = ()
    empty_value: Tuple[str, ...] = ()
    empty_event_lists: Tuple[str, ...] = ()


def _same(*keys: str) -> Tuple[Tuple[str, str], ...]:
    return tuple((key, key) for key in keys)


V2_REPLY_CHECK = EventCheck(
    matching=_same(
        "profileId",
        "contentURI",
        "pointedProfileId",
        "pointedPubId",
        "actionModules",
        "actionModulesInitDatas",
        "referenceModule",
        "referenceModuleInitData",
        "referrerProfileIds",
        "referrerPubIds",
    ),
    empty_event=("referenceModuleReturnData", "referenceModuleInitReturnData"),
    empty_event_lists=("actionModulesInitReturnDatas",),
)

EVENT_CHECKS: Dict[Tuple[ActionType, SchemaVersion], EventCheck] = {
    (ActionType.POST_CREATED, SchemaVersion.V1): EventCheck(
        matching=_same("profileId", "contentURI", "collectModule", "referenceModule"),
        empty_event=("collectModuleReturnData", "referenceModuleReturnData"),
        empty_value=("collectModuleInitData", "referenceModuleInitData"),
    ),
    (ActionType.POST_CREATED, SchemaVersion.V2): EventCheck(
        matching=_same("profileId", "contentURI", "actionModules", "referenceModule"),
        empty_event=("referenceModuleInitReturnData",),
        empty_value=("referenceModuleInitData",),
    ),
    (ActionType.COMMENT_CREATED, SchemaVersion.V1): EventCheck(
        matching=_same(
            "profileId",
            "contentURI",
            "profileIdPointed",
            "pubIdPointed",
            "collectModule",
            "referenceModule",
        ),
        empty_event=("collectModuleReturnData", "referenceModuleReturnData"),
        empty_value=("collectModuleInitData", "referenceModuleInitData"),
    ),
    (ActionType.COMMENT_CREATED, SchemaVersion.V2): V2_REPLY_CHECK,
    (ActionType.MIRROR_CREATED, SchemaVersion.V1): EventCheck(
        matching=_same("profileId", "profileIdPointed", "pubIdPointed", "referenceModule"),
        empty_event=("referenceModuleReturnData",),
        empty_value=("referenceModuleInitData",),
    ),
    (ActionType.MIRROR_CREATED, SchemaVersion.V2): EventCheck(
        matching=_same("profileId", "pointedProfileId", "pointedPubId", "metadataURI"),
        empty_event=("referenceModuleReturnData",),
        empty_value=("referenceModuleData",),
    ),
    (ActionType.QUOTE_CREATED, SchemaVersion.V2): V2_REPLY_CHECK,
}


def generate_publication_id(publication: DAPublication) -> str:
    """``{profileId}-{pubId}-DA-{first segment of dataAvailabilityId}``"""
    profile_id = publication.params.get("profileId")
    pub_id = publication.event.get("pubId")
    da_prefix = publication.data_availability_id.split("-")[0]
    return f"{profile_id}-{pub_id}-DA-{da_prefix}"


def _pub_id_equals(event: Dict[str, Any], expected: int) -> bool:
    try:
        return to_int(event.get("pubId")) == expected
    except (TypeError, ValueError):
        return False


class PublicationVerifier:
    """Type-specific checks for one publication."""

    def __init__(self, publication: DAPublication, lens_hub: LensHubGateway):
        self.publication = publication
        self.lens_hub = lens_hub
        self.variant = (publication.action, publication.version)
        self.event_check = EVENT_CHECKS[self.variant]

    @property
    def is_post(self) -> bool:
        return self.publication.action == ActionType.POST_CREATED

    def verify_publication_id_matches(self) -> bool:
        return generate_publication_id(self.publication) == self.publication.publication_id

    def verify_event_with_typed_data(self, counter: int) -> Optional[ValidatorError]:
        """
        Cross-check the emitted event against the signed typed data.

        Args:
            counter: For posts, the simulated publication id; otherwise the
                profile's publication count at the claimed block

        Returns:
            None if consistent, EVENT_MISMATCH otherwise
        """
        event = self.publication.event
        params = self.publication.params
        value = self.publication.typed_value
        check = self.event_check

        expected_pub_id = counter if self.is_post else counter + 1
        if not _pub_id_equals(event, expected_pub_id):
            log.debug("pubId %s does not follow counter %s", event.get("pubId"), counter)
            return ValidatorError.EVENT_MISMATCH

        for value_key, event_key in check.matching:
            if value.get(value_key) != params.get(event_key):
                log.debug("event %s does not match typed data %s", event_key, value_key)
                return ValidatorError.EVENT_MISMATCH

        if any(event.get(key) != EMPTY_BYTE for key in check.empty_event):
            return ValidatorError.EVENT_MISMATCH

        if any(value.get(key) != EMPTY_BYTE for key in check.empty_value):
            return ValidatorError.EVENT_MISMATCH

        for key in check.empty_event_lists:
            items = event.get(key)
            if not isinstance(items, list) or items:
                return ValidatorError.EVENT_MISMATCH

        return None

    def recover_signer(self) -> str:
        this_publication = self.publication.this_publication
        return recover_typed_data_signer(
            this_publication["typedData"], this_publication["signature"]
        )

    # ------------------------------------------------------------------------
    # Pointer
    # ------------------------------------------------------------------------

    def verify_pointer(self) -> Optional[ValidatorError]:
        """Posts must not point anywhere; everything else must point at a DA publication."""
        pointer = self.publication.pointer

        if self.is_post:
            return ValidatorError.INVALID_POINTER_SET_NOT_NEEDED if pointer else None

        if not pointer:
            return ValidatorError.PUBLICATION_NO_POINTER
        if pointer.get("type") != PointerType.ON_DA.value:
            return ValidatorError.PUBLICATION_NONE_DA
        return None

    # ------------------------------------------------------------------------
    # Comment / Mirror / Quote
    # ------------------------------------------------------------------------

    async def verify_signer(self) -> Tuple[Optional[ValidatorError], Optional[int]]:
        """
        Check the typed data signer against on-chain profile state.

        Returns:
            (error, publication count at the claimed block)
        """
        try:
            signer = self.recover_signer()
            profile_id = to_int(self.publication.typed_value["profileId"])
            expected_nonce = to_int(self.publication.typed_value["nonce"])
        except Exception as e:
            log.debug("typed data could not be recovered: %s", e)
            return ValidatorError.INVALID_FORMATTED_TYPED_DATA, None

        try:
            details = await self.lens_hub.get_profile_details(
                self.publication.version,
                profile_id,
                signer,
                self.publication.block_number,
            )
        except (RpcError, ValueError, IndexError) as e:
            log.debug("profile details unavailable: %s", e)
            return ValidatorError.DATA_CANT_BE_READ_FROM_NODE, None

        if details.nonce != expected_nonce:
            return ValidatorError.PUBLICATION_NONCE_INVALID, None

        if not details.is_signer_allowed(signer):
            return ValidatorError.PUBLICATION_SIGNER_NOT_ALLOWED, None

        return None, details.pub_count

    # ------------------------------------------------------------------------
    # Post
    # ------------------------------------------------------------------------

    def build_simulation_calldata(self) -> bytes:
        this_publication = self.publication.this_publication
        value = self.publication.typed_value
        signature = split_signature(this_publication["signature"])

        if self.publication.version == SchemaVersion.V1:
            return encode_post_simulation_v1(
                value, signature, bool(this_publication.get("signedByDelegate"))
            )
        return encode_post_simulation_v2(value, self.recover_signer(), signature)

    async def verify_simulation(self) -> Tuple[Optional[ValidatorError], Optional[int]]:
        """
        Simulate the post at the claimed block.

        Returns:
            (error, simulated publication id)
        """
        try:
            calldata = self.build_simulation_calldata()
            profile_id = to_int(self.publication.typed_value["profileId"])
        except Exception as e:
            log.debug("simulation calldata could not be built: %s", e)
            return ValidatorError.INVALID_FORMATTED_TYPED_DATA, None

        block_number = self.publication.block_number
        simulated, pub_count = await asyncio.gather(
            self.lens_hub.simulate(calldata, block_number),
            self.lens_hub.get_pub_count(self.publication.version, profile_id, block_number),
            return_exceptions=True,
        )

        if isinstance(simulated, Exception):
            log.debug("simulation failed to run: %s", simulated)
            return ValidatorError.SIMULATION_NODE_COULD_NOT_RUN, None

        if isinstance(pub_count, Exception):
            log.debug("pub count unavailable: %s", pub_count)
            return ValidatorError.DATA_CANT_BE_READ_FROM_NODE, None

        if simulated != pub_count + 1:
            return await self._classify_simulation_mismatch(), None

        return None, simulated

    async def _classify_simulation_mismatch(self) -> ValidatorError:
        block_hash = self.publication.this_publication.get("blockHash")
        try:
            exists = await self.lens_hub.ethereum.block_hash_exists(block_hash)
        except RpcError:
            return ValidatorError.DATA_CANT_BE_READ_FROM_NODE

        if not exists:
            log.warning("[!] Block %s no longer resolves, possible reorg", block_hash)
            return ValidatorError.POTENTIAL_REORG
        return ValidatorError.SIMULATION_FAILED


def create_publication_verifier(
    publication: DAPublication,
    lens_hub: LensHubGateway,
) -> Optional[PublicationVerifier]:
    """Build the verifier for a publication's variant, or None if the variant is unknown."""
    if (publication.action, publication.version) not in EVENT_CHECKS:
        return None
    return PublicationVerifier(publication, lens_hub)
