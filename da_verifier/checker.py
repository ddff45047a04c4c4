"""
DA proof checker.

Runs the full validation pipeline for one DA transaction and owns the
idempotency contract: unless told to bypass the cache, a transaction that
already has a stored verdict gets that verdict back untouched.

Pipeline (first failure wins):
1. Cached verdict (settled verdicts are written back once reached)
2. Fetch publication and timestamp proof blobs
3. Timestamp proof uploaded by a trusted submitter
4. Submitter signature, receipt signature, proof type and id
5. Event timestamp and typed data deadline match the block timestamp
6. Claimed block is the closest block to the receipt
7. Type-specific checks (simulation, pointer, signer, event)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .block_selector import candidate_block_numbers, validate_chosen_block
from .environment import ChainConfig, is_valid_submitter
from .errors import BundlrTimeoutError, RpcError, ValidatorError, should_retry
from .gateway import DAProofGateway, DAProofVerifier
from .lens_hub import LensHubGateway
from .models import DAPublication, TxValidatedResult, strip_arweave_prefix
from .result import Verdict
from .verifiers import PublicationVerifier, create_publication_verifier

log = logging.getLogger(__name__)


@dataclass
class CheckOptions:
    """Per-call switches for the checker."""
    by_pass_db: bool = False
    verify_pointer: bool = True


@dataclass
class VerificationContext:
    """Everything a check needs: chain config plus the injected collaborators."""
    chain_config: ChainConfig
    gateway: DAProofGateway
    verifier: DAProofVerifier
    lens_hub: LensHubGateway


def verdict_from_record(record: TxValidatedResult) -> Verdict:
    """Turn a stored ``tx:<id>`` record back into the verdict it was saved from."""
    publication = (
        DAPublication(record.data_availability_result)
        if record.data_availability_result
        else None
    )
    if record.success:
        return Verdict.success(publication)

    try:
        error = ValidatorError(record.failure_reason)
    except ValueError:
        error = ValidatorError.UNKNOWN
    return Verdict.failure(error, publication)


class DAProofChecker:
    """Validates DA transactions against the storage network and the chain."""

    def __init__(self, context: VerificationContext):
        self.context = context

    @property
    def gateway(self) -> DAProofGateway:
        return self.context.gateway

    @property
    def verifier(self) -> DAProofVerifier:
        return self.context.verifier

    @property
    def chain_config(self) -> ChainConfig:
        return self.context.chain_config

    async def check_da_proof(self, tx_id: str, options: Optional[CheckOptions] = None) -> Verdict:
        """
        Check one DA transaction by id.

        Args:
            tx_id: Storage transaction id, optionally ``ar://``-prefixed
            options: Cache bypass and pointer verification switches

        Returns:
            Verdict with the publication on success, or the error kind and the
            publication (when fetched) on failure
        """
        options = options or CheckOptions()
        tx_id = strip_arweave_prefix(tx_id)

        if not options.by_pass_db:
            cached = await self.gateway.get_tx_result_from_cache(tx_id)
            if cached is not None:
                log.debug("[SKIP] %s already checked", tx_id)
                return verdict_from_record(cached)

        try:
            raw = await self.gateway.get_da_publication(tx_id)
        except BundlrTimeoutError:
            return Verdict.failure(ValidatorError.CAN_NOT_CONNECT_TO_BUNDLR)
        if raw is None:
            return Verdict.failure(ValidatorError.INVALID_TX_ID)

        publication = DAPublication(raw)

        try:
            verdict = await self._check_fetched(tx_id, publication, options)
        except Exception as e:
            log.error("[!] Unexpected error checking %s: %s", tx_id, e, exc_info=True)
            verdict = Verdict.failure(ValidatorError.UNKNOWN, publication)

        await self._cache_verdict(tx_id, verdict)
        return verdict

    async def _check_fetched(
        self,
        tx_id: str,
        publication: DAPublication,
        options: CheckOptions,
    ) -> Verdict:
        timestamp_id = publication.timestamp_proof_response.get("id")

        try:
            timestamp_proofs = await self.gateway.get_timestamp_proofs(timestamp_id, tx_id)
        except BundlrTimeoutError:
            return Verdict.failure(ValidatorError.CAN_NOT_CONNECT_TO_BUNDLR, publication)
        if timestamp_proofs is None:
            return Verdict.failure(ValidatorError.INVALID_TX_ID, publication)

        try:
            is_submitter = await self.verifier.verify_transaction_submitter(
                self.chain_config.environment,
                timestamp_id,
                self.chain_config.deployment,
            )
        except BundlrTimeoutError:
            return Verdict.failure(ValidatorError.CAN_NOT_CONNECT_TO_BUNDLR, publication)
        if not is_submitter:
            return Verdict.failure(ValidatorError.TIMESTAMP_PROOF_NOT_SUBMITTER, publication)

        return await self._check_da_proof(publication, timestamp_proofs, options)

    async def check_da_proof_with_metadata(
        self,
        tx_id: str,
        publication_raw: Dict[str, Any],
        timestamp_proofs: Dict[str, Any],
        submitter: Optional[str],
        options: Optional[CheckOptions] = None,
    ) -> Verdict:
        """
        Check a DA transaction whose blobs were already fetched in bulk.

        Args:
            tx_id: Storage transaction id
            publication_raw: The publication blob
            timestamp_proofs: The timestamp proof blob
            submitter: Address that uploaded the publication
            options: Cache bypass and pointer verification switches
        """
        options = options or CheckOptions()
        publication = DAPublication(publication_raw)

        try:
            replayed = False
            if not options.by_pass_db:
                cached = await self.gateway.get_tx_result_from_cache(tx_id)
                if cached is not None:
                    return verdict_from_record(cached)

                chain_signature = publication.this_publication.get("signature")
                replayed = bool(chain_signature) and await self.gateway.has_signature_been_used_before(
                    chain_signature, tx_id
                )

            if replayed:
                verdict = Verdict.failure(ValidatorError.CHAIN_SIGNATURE_ALREADY_USED, publication)
            elif not is_valid_submitter(
                self.chain_config.environment, submitter, self.chain_config.deployment
            ):
                verdict = Verdict.failure(ValidatorError.TIMESTAMP_PROOF_NOT_SUBMITTER, publication)
            else:
                verdict = await self._check_da_proof(publication, timestamp_proofs, options)
        except Exception as e:
            log.error("[!] Unexpected error checking %s: %s", tx_id, e, exc_info=True)
            verdict = Verdict.failure(ValidatorError.UNKNOWN, publication)

        await self._cache_verdict(tx_id, verdict)
        return verdict

    async def _cache_verdict(self, tx_id: str, verdict: Verdict):
        # Retryable failures stay uncached so the next check runs again
        if verdict.is_failure and should_retry(verdict.error):
            return

        publication = verdict.publication
        await self.gateway.save_tx_result(TxValidatedResult(
            proof_tx_id=tx_id,
            success=verdict.is_success,
            data_availability_result=publication.raw if publication is not None else None,
            failure_reason=verdict.error.value if verdict.is_failure else None,
        ))

    # ------------------------------------------------------------------------
    # Shared pipeline
    # ------------------------------------------------------------------------

    async def _check_da_proof(
        self,
        publication: DAPublication,
        timestamp_proofs: Dict[str, Any],
        options: CheckOptions,
    ) -> Verdict:
        if not publication.signature:
            return Verdict.failure(ValidatorError.NO_SIGNATURE_SUBMITTER, publication)

        signer = await self.verifier.extract_address(publication.raw)
        if not is_valid_submitter(self.chain_config.environment, signer, self.chain_config.deployment):
            return Verdict.failure(ValidatorError.INVALID_SIGNATURE_SUBMITTER, publication)

        if not await self.verifier.verify_timestamp_signature(publication.raw):
            return Verdict.failure(ValidatorError.TIMESTAMP_PROOF_INVALID_SIGNATURE, publication)

        if timestamp_proofs.get("type") != publication.type:
            return Verdict.failure(ValidatorError.TIMESTAMP_PROOF_INVALID_TYPE, publication)

        if timestamp_proofs.get("dataAvailabilityId") != publication.data_availability_id:
            return Verdict.failure(ValidatorError.TIMESTAMP_PROOF_INVALID_DA_ID, publication)

        block_timestamp = publication.block_timestamp
        if publication.event.get("timestamp") != block_timestamp:
            return Verdict.failure(ValidatorError.INVALID_EVENT_TIMESTAMP, publication)

        if publication.typed_value.get("deadline") != block_timestamp:
            return Verdict.failure(ValidatorError.INVALID_TYPED_DATA_DEADLINE_TIMESTAMP, publication)

        error = await self._validate_chosen_block(publication)
        if error:
            return Verdict.failure(error, publication)

        error = await self._check_da_publication(publication, options)
        if error:
            return Verdict.failure(error, publication)

        log.debug("[OK] %s passed all checks", publication.publication_id)
        return Verdict.success(publication)

    async def _validate_chosen_block(self, publication: DAPublication) -> Optional[ValidatorError]:
        block_number = publication.block_number
        try:
            blocks = await self.gateway.get_block_range(candidate_block_numbers(block_number))
        except RpcError as e:
            log.debug("blocks around %s unavailable: %s", block_number, e)
            return ValidatorError.BLOCK_CANT_BE_READ_FROM_NODE

        target_ms = publication.timestamp_proof_response.get("timestamp")
        return validate_chosen_block(block_number, blocks, target_ms)

    async def _check_da_publication(
        self,
        publication: DAPublication,
        options: CheckOptions,
    ) -> Optional[ValidatorError]:
        verifier = create_publication_verifier(publication, self.context.lens_hub)
        if verifier is None:
            return ValidatorError.PUBLICATION_NOT_RECOGNIZED

        if not verifier.verify_publication_id_matches():
            return ValidatorError.GENERATED_PUBLICATION_ID_MISMATCH

        error = verifier.verify_pointer()
        if error:
            return error

        if verifier.is_post:
            error, simulated_pub_id = await verifier.verify_simulation()
            if error:
                return error
            return verifier.verify_event_with_typed_data(simulated_pub_id)

        if options.verify_pointer:
            error = await self._verify_pointer_publication(verifier)
            if error:
                return error

        error, pub_count = await verifier.verify_signer()
        if error:
            return error
        return verifier.verify_event_with_typed_data(pub_count)

    async def _verify_pointer_publication(self, verifier: PublicationVerifier) -> Optional[ValidatorError]:
        """Check the pointed-at publication, one level deep only."""
        location = verifier.publication.pointer["location"]
        log.debug("verifying pointer %s", location)

        verdict = await self.check_da_proof(
            location, CheckOptions(by_pass_db=False, verify_pointer=False)
        )
        if verdict.is_failure:
            log.debug("pointer %s failed: %s", location, verdict.error.value)
            return ValidatorError.POINTER_FAILED_VERIFICATION
        return None
