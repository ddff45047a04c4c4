"""
Signature recovery and receipt verification.

Three kinds of signatures show up in a DA submission:
1. The submitter's personal-message signature over the publication JSON
2. The profile owner's (or delegate's) EIP-712 signature over the typed data
3. The storage network's RSA-PSS receipt over the timestamp proof

Everything here is pure CPU work with picklable inputs, so the worker pool can
run it out of process.
"""

import base64
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from web3 import Web3


# ============================================================================
# Submitter signature (EIP-191 personal message)
# ============================================================================

def publication_signing_payload(publication: Dict[str, Any]) -> str:
    """
    Serialize a publication the way the submitter signed it.

    The signature field is dropped and the remaining keys keep their original
    order with compact separators.
    """
    unsigned = {key: value for key, value in publication.items() if key != "signature"}
    return json.dumps(unsigned, separators=(",", ":"), ensure_ascii=False)


def extract_address(publication: Dict[str, Any]) -> str:
    """Recover the checksummed address that signed the publication payload."""
    message = encode_defunct(text=publication_signing_payload(publication))
    return Account.recover_message(message, signature=publication["signature"])


# ============================================================================
# Timestamp proof receipt (Arweave deep hash + RSA-PSS)
# ============================================================================

DeepHashChunk = Union[bytes, List["DeepHashChunk"]]


def _sha384(data: bytes) -> bytes:
    return hashlib.sha384(data).digest()


def deep_hash(data: DeepHashChunk) -> bytes:
    """Arweave deep hash over a blob or a (nested) list of blobs."""
    if isinstance(data, list):
        acc = _sha384(f"list{len(data)}".encode())
        for chunk in data:
            acc = _sha384(acc + deep_hash(chunk))
        return acc

    tag = _sha384(f"blob{len(data)}".encode())
    return _sha384(tag + _sha384(data))


def b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def receipt_message(response: Dict[str, Any]) -> bytes:
    """The digest the storage network signs when it issues a receipt."""
    return deep_hash([
        b"Bundlr",
        str(response["version"]).encode(),
        str(response["id"]).encode(),
        str(response["deadlineHeight"]).encode(),
        str(response["timestamp"]).encode(),
    ])


def verify_receipt_signature(response: Dict[str, Any]) -> bool:
    """
    Verify a storage network receipt.

    Args:
        response: The ``timestampProofs.response`` object; ``public`` holds the
            base64url RSA modulus (exponent 65537) and ``signature`` the
            base64url RSA-PSS/SHA-256 signature.

    Returns:
        True if the receipt signature is valid
    """
    try:
        modulus = int.from_bytes(b64url_decode(response["public"]), "big")
        public_key = rsa.RSAPublicNumbers(65537, modulus).public_key()
        public_key.verify(
            b64url_decode(response["signature"]),
            receipt_message(response),
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.AUTO),
            hashes.SHA256(),
        )
        return True
    except (InvalidSignature, KeyError, ValueError, TypeError):
        return False


# ============================================================================
# EIP-712 typed data
# ============================================================================

DOMAIN_FIELD_TYPES = {
    "name": "string",
    "version": "string",
    "chainId": "uint256",
    "verifyingContract": "address",
    "salt": "bytes32",
}


def _primary_type(types: Dict[str, List[Dict[str, str]]]) -> str:
    referenced = {
        field["type"].rstrip("[]")
        for fields in types.values()
        for field in fields
    }
    roots = [name for name in types if name not in referenced]
    if len(roots) != 1:
        raise ValueError(f"Cannot infer primary type from {list(types)}")
    return roots[0]


def _normalize_value(types: Dict[str, Any], field_type: str, value: Any) -> Any:
    if field_type.endswith("[]"):
        return [_normalize_value(types, field_type[:-2], item) for item in value]
    if field_type in types:
        return _normalize_struct(types, field_type, value)
    if field_type.startswith(("uint", "int")):
        if isinstance(value, str):
            return int(value, 16) if value.startswith("0x") else int(value)
        return int(value)
    if field_type.startswith("bytes") and isinstance(value, str):
        return Web3.to_bytes(hexstr=value)
    return value


def _normalize_struct(types: Dict[str, Any], type_name: str, value: Dict[str, Any]) -> Dict[str, Any]:
    return {
        field["name"]: _normalize_value(types, field["type"], value[field["name"]])
        for field in types[type_name]
    }


def build_typed_message(typed_data: Dict[str, Any]) -> Dict[str, Any]:
    """Build a full EIP-712 message (with the domain type) from ``{types, domain, value}``."""
    types = {k: v for k, v in typed_data["types"].items() if k != "EIP712Domain"}
    domain = typed_data["domain"]
    primary_type = _primary_type(types)

    domain_fields = [
        {"name": name, "type": DOMAIN_FIELD_TYPES[name]}
        for name in DOMAIN_FIELD_TYPES
        if name in domain
    ]

    return {
        "types": {"EIP712Domain": domain_fields, **types},
        "primaryType": primary_type,
        "domain": _normalize_struct({"EIP712Domain": domain_fields}, "EIP712Domain", domain),
        "message": _normalize_struct(types, primary_type, typed_data["value"]),
    }


def recover_typed_data_signer(typed_data: Dict[str, Any], signature: str) -> str:
    """
    Recover who signed an EIP-712 payload.

    Raises:
        ValueError, KeyError, TypeError: If the typed data is malformed
    """
    signable = encode_typed_data(full_message=build_typed_message(typed_data))
    return Account.recover_message(signable, signature=signature)


@dataclass
class SignatureParts:
    v: int
    r: bytes
    s: bytes


def split_signature(signature: str) -> SignatureParts:
    """Split a 65-byte hex signature into (v, r, s) with v normalized to 27/28."""
    raw = Web3.to_bytes(hexstr=signature)
    if len(raw) != 65:
        raise ValueError(f"Invalid signature length: {len(raw)}")

    v = raw[64]
    if v < 27:
        v += 27

    return SignatureParts(v=v, r=raw[:32], s=raw[32:64])
