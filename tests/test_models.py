"""Tests for the DA publication wrapper and persisted records."""

from da_verifier.models import (
    ActionType,
    DAPublication,
    SchemaVersion,
    TxValidatedResult,
    detect_schema_version,
    strip_arweave_prefix,
)


def test_strip_arweave_prefix():
    assert strip_arweave_prefix("ar://abc") == "abc"
    assert strip_arweave_prefix("abc") == "abc"


def test_schema_version_detection():
    assert detect_schema_version({"profileId": "0x01"}) == SchemaVersion.V1
    assert detect_schema_version({"quoteParams": {}}) == SchemaVersion.V2
    assert detect_schema_version(None) == SchemaVersion.V1


def test_publication_accessors():
    publication = DAPublication({
        "type": "MIRROR_CREATED",
        "chainProofs": {
            "thisPublication": {
                "blockNumber": "42",
                "blockTimestamp": 1674747372,
                "typedData": {"value": {"deadline": 1674747372}},
            },
        },
        "event": {"mirrorParams": {"profileId": "0x01"}},
    })

    assert publication.action == ActionType.MIRROR_CREATED
    assert publication.version == SchemaVersion.V2
    assert publication.block_number == 42
    assert publication.typed_value == {"deadline": 1674747372}
    assert publication.params == {"profileId": "0x01"}
    assert publication.pointer is None
    assert publication.timestamp_proof_response == {}


def test_unknown_action_is_none():
    assert DAPublication({"type": "COLLECT_CREATED"}).action is None


def test_record_keys():
    record = TxValidatedResult("tx-1", False, None, "EVENT_MISMATCH")
    assert record.to_dict() == {
        "proofTxId": "tx-1",
        "success": False,
        "dataAvailabilityResult": None,
        "failureReason": "EVENT_MISMATCH",
    }
    assert TxValidatedResult.from_dict(record.to_dict()) == record
