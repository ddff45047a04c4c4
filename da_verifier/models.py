"""
Data models for DA submissions.

The raw publication JSON is kept exactly as fetched: its serialization is what
the submitter signed, so key order and nesting must survive untouched. The
wrapper only adds the two tags every verifier needs (action and schema
version), resolved once when the publication is wrapped.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ActionType(Enum):
    """Publication action families."""
    POST_CREATED = "POST_CREATED"
    COMMENT_CREATED = "COMMENT_CREATED"
    MIRROR_CREATED = "MIRROR_CREATED"
    QUOTE_CREATED = "QUOTE_CREATED"

    @classmethod
    def parse(cls, value: Any) -> Optional["ActionType"]:
        try:
            return cls(value)
        except ValueError:
            return None


class SchemaVersion(Enum):
    """LensHub schema generation the publication was signed against."""
    V1 = 1
    V2 = 2


class PointerType(Enum):
    ON_DA = "ON_DA"
    ON_EVM_CHAIN = "ON_EVM_CHAIN"


# Nested event structs that only exist in V2 events
V2_PARAMS_KEYS = ("postParams", "commentParams", "mirrorParams", "quoteParams")

EMPTY_BYTE = "0x"


def detect_schema_version(event: Optional[Dict[str, Any]]) -> SchemaVersion:
    """Detect the schema version from the emitted event shape."""
    if event and any(key in event for key in V2_PARAMS_KEYS):
        return SchemaVersion.V2
    return SchemaVersion.V1


def strip_arweave_prefix(tx_id: str) -> str:
    return tx_id.replace("ar://", "", 1) if tx_id.startswith("ar://") else tx_id


@dataclass
class BlockInfo:
    """Block number and unix timestamp (seconds)."""
    number: int
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {"number": self.number, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlockInfo":
        return cls(number=int(data["number"]), timestamp=data["timestamp"])


@dataclass
class DAPublication:
    """
    A fetched DA submission.

    Attributes:
        raw: The publication JSON as stored on the DA layer (never mutated)
        action: Action family, or None when the type is not recognised
        version: Schema version detected from the event
    """
    raw: Dict[str, Any]
    action: Optional[ActionType] = field(init=False)
    version: SchemaVersion = field(init=False)

    def __post_init__(self):
        self.action = ActionType.parse(self.raw.get("type"))
        self.version = detect_schema_version(self.raw.get("event"))

    @property
    def signature(self) -> Optional[str]:
        return self.raw.get("signature")

    @property
    def data_availability_id(self) -> str:
        return self.raw.get("dataAvailabilityId", "")

    @property
    def publication_id(self) -> Optional[str]:
        return self.raw.get("publicationId")

    @property
    def type(self) -> Optional[str]:
        return self.raw.get("type")

    @property
    def event(self) -> Dict[str, Any]:
        return self.raw.get("event") or {}

    @property
    def timestamp_proofs(self) -> Dict[str, Any]:
        return self.raw.get("timestampProofs") or {}

    @property
    def timestamp_proof_response(self) -> Dict[str, Any]:
        return self.timestamp_proofs.get("response") or {}

    @property
    def chain_proofs(self) -> Dict[str, Any]:
        return self.raw.get("chainProofs") or {}

    @property
    def this_publication(self) -> Dict[str, Any]:
        return self.chain_proofs.get("thisPublication") or {}

    @property
    def pointer(self) -> Optional[Dict[str, Any]]:
        return self.chain_proofs.get("pointer")

    @property
    def typed_data(self) -> Dict[str, Any]:
        return self.this_publication.get("typedData") or {}

    @property
    def typed_value(self) -> Dict[str, Any]:
        return self.typed_data.get("value") or {}

    @property
    def block_number(self) -> int:
        return int(self.this_publication.get("blockNumber"))

    @property
    def block_timestamp(self) -> int:
        return self.this_publication.get("blockTimestamp")

    @property
    def params(self) -> Dict[str, Any]:
        """The nested V2 ``*Params`` struct, or the flat event for V1."""
        if self.version == SchemaVersion.V2:
            for key in V2_PARAMS_KEYS:
                if key in self.event:
                    return self.event[key]
        return self.event


@dataclass
class TxValidatedResult:
    """Persisted verdict for a DA transaction (the ``tx:<id>`` record)."""
    proof_tx_id: str
    success: bool
    data_availability_result: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = None
    extra_error_info: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "proofTxId": self.proof_tx_id,
            "success": self.success,
            "dataAvailabilityResult": self.data_availability_result,
        }
        if self.failure_reason is not None:
            data["failureReason"] = self.failure_reason
        if self.extra_error_info is not None:
            data["extraErrorInfo"] = self.extra_error_info
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TxValidatedResult":
        return cls(
            proof_tx_id=data["proofTxId"],
            success=bool(data["success"]),
            data_availability_result=data.get("dataAvailabilityResult"),
            failure_reason=data.get("failureReason"),
            extra_error_info=data.get("extraErrorInfo"),
        )


@dataclass
class BatchItem:
    """One entry of a bulk fetch: tx id, uploader and the two blobs."""
    id: str
    address: Optional[str]
    publication: Optional[Dict[str, Any]]
    timestamp_proofs: Optional[Dict[str, Any]] = None


@dataclass
class TransactionsPage:
    """One page of DA transaction ids from the storage network index."""
    ids: List[str]
    end_cursor: Optional[str]
    has_next_page: bool
