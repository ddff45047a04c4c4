"""Shared fixtures: real signing keys and DA publication builders."""

import base64
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from web3 import Web3

from da_verifier.checker import DAProofChecker, VerificationContext
from da_verifier.environment import SUBMITTERS, ChainConfig, Deployment, Environment
from da_verifier.gateway import SignatureProofVerifier
from da_verifier.lens_hub import ProfileDetails
from da_verifier.models import BlockInfo
from da_verifier.signatures import build_typed_message, publication_signing_payload, receipt_message

HUB = "0xDb46d1Dc155634FbC732f92E853b10B288AD5a1d"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
COLLECT_MODULE = "0x0BE6bD7092ee83D44a6eC1D949626FeE48caB30c"

BLOCK_NUMBER = 100
BLOCK_TIMESTAMP = 1674747372
DA_ID = "6534728f-9a1b-4c2d-8e3f-000000000001"

COMMENT_V1_TYPES = {
    "CommentWithSig": [
        {"name": "profileId", "type": "uint256"},
        {"name": "contentURI", "type": "string"},
        {"name": "profileIdPointed", "type": "uint256"},
        {"name": "pubIdPointed", "type": "uint256"},
        {"name": "referenceModuleData", "type": "bytes"},
        {"name": "collectModule", "type": "address"},
        {"name": "collectModuleInitData", "type": "bytes"},
        {"name": "referenceModule", "type": "address"},
        {"name": "referenceModuleInitData", "type": "bytes"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ]
}

POST_V1_TYPES = {
    "PostWithSig": [
        {"name": "profileId", "type": "uint256"},
        {"name": "contentURI", "type": "string"},
        {"name": "collectModule", "type": "address"},
        {"name": "collectModuleInitData", "type": "bytes"},
        {"name": "referenceModule", "type": "address"},
        {"name": "referenceModuleInitData", "type": "bytes"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ]
}

MIRROR_V1_TYPES = {
    "MirrorWithSig": [
        {"name": "profileId", "type": "uint256"},
        {"name": "profileIdPointed", "type": "uint256"},
        {"name": "pubIdPointed", "type": "uint256"},
        {"name": "referenceModuleData", "type": "bytes"},
        {"name": "referenceModule", "type": "address"},
        {"name": "referenceModuleInitData", "type": "bytes"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ]
}

POST_V2_TYPES = {
    "Post": [
        {"name": "profileId", "type": "uint256"},
        {"name": "contentURI", "type": "string"},
        {"name": "actionModules", "type": "address[]"},
        {"name": "actionModulesInitDatas", "type": "bytes[]"},
        {"name": "referenceModule", "type": "address"},
        {"name": "referenceModuleInitData", "type": "bytes"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ]
}

REPLY_V2_FIELDS = [
    {"name": "profileId", "type": "uint256"},
    {"name": "contentURI", "type": "string"},
    {"name": "pointedProfileId", "type": "uint256"},
    {"name": "pointedPubId", "type": "uint256"},
    {"name": "referrerProfileIds", "type": "uint256[]"},
    {"name": "referrerPubIds", "type": "uint256[]"},
    {"name": "referenceModuleData", "type": "bytes"},
    {"name": "actionModules", "type": "address[]"},
    {"name": "actionModulesInitDatas", "type": "bytes[]"},
    {"name": "referenceModule", "type": "address"},
    {"name": "referenceModuleInitData", "type": "bytes"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]

COMMENT_V2_TYPES = {"Comment": REPLY_V2_FIELDS}
QUOTE_V2_TYPES = {"Quote": REPLY_V2_FIELDS}

MIRROR_V2_TYPES = {
    "Mirror": [
        {"name": "profileId", "type": "uint256"},
        {"name": "metadataURI", "type": "string"},
        {"name": "pointedProfileId", "type": "uint256"},
        {"name": "pointedPubId", "type": "uint256"},
        {"name": "referrerProfileIds", "type": "uint256[]"},
        {"name": "referrerPubIds", "type": "uint256[]"},
        {"name": "referenceModuleData", "type": "bytes"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ]
}

V1_DOMAIN = {
    "name": "Lens Protocol Profiles",
    "version": "1",
    "chainId": 137,
    "verifyingContract": HUB,
}
V2_DOMAIN = dict(V1_DOMAIN, version="2")

DEFAULT_POINTER = {"location": "ar://pointed-tx", "type": "ON_DA"}


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def sign_typed_data(typed_data, account) -> str:
    signable = encode_typed_data(full_message=build_typed_message(typed_data))
    return Web3.to_hex(Account.sign_message(signable, account.key).signature)


def sign_publication(publication, account):
    """Fill in the submitter signature in place, keeping key order."""
    message = encode_defunct(text=publication_signing_payload(publication))
    publication["signature"] = Web3.to_hex(Account.sign_message(message, account.key).signature)
    return publication


def build_receipt(rsa_key, receipt_id="timestamp-proof-id", timestamp_ms=None):
    modulus = rsa_key.public_key().public_numbers().n
    response = {
        "id": receipt_id,
        "timestamp": timestamp_ms if timestamp_ms is not None else BLOCK_TIMESTAMP * 1000 + 500,
        "version": "1.0.0",
        "public": b64url(modulus.to_bytes((modulus.bit_length() + 7) // 8, "big")),
        "signature": "",
        "deadlineHeight": 1096342,
        "block": 1096342,
        "validatorSignatures": [],
    }
    signature = rsa_key.sign(
        receipt_message(response),
        padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH),
        hashes.SHA256(),
    )
    response["signature"] = b64url(signature)
    return response


def assemble_publication(action, types, domain, value, event, submitter, profile_owner, rsa_key, pointer):
    """Wrap signed typed data and its event into a DA publication signed by ``submitter``."""
    typed_data = {"types": types, "domain": dict(domain), "value": value}
    publication = {
        "signature": "",
        "dataAvailabilityId": DA_ID,
        "type": action,
        "timestampProofs": {
            "type": "BUNDLR",
            "hashPrefix": "1",
            "response": build_receipt(rsa_key),
        },
        "chainProofs": {
            "thisPublication": {
                "signature": sign_typed_data(typed_data, profile_owner),
                "signedByDelegate": False,
                "signatureDeadline": BLOCK_TIMESTAMP,
                "typedData": typed_data,
                "blockHash": "0x" + "ab" * 32,
                "blockNumber": BLOCK_NUMBER,
                "blockTimestamp": BLOCK_TIMESTAMP,
            },
            "pointer": pointer,
        },
        "publicationId": "0x18-0x3a-DA-6534728f",
        "event": event,
    }
    return sign_publication(publication, submitter)


def build_comment_v1(submitter, profile_owner, rsa_key, pointer=None, **overrides):
    """
    A fully signed V1 comment by profile 0x18, pubId 0x3a.

    ``overrides`` replaces typed data values before signing.
    """
    value = {
        "profileId": "0x18",
        "contentURI": "ar://comment-metadata",
        "profileIdPointed": "0x01",
        "pubIdPointed": "0x02",
        "referenceModuleData": "0x",
        "collectModule": COLLECT_MODULE,
        "collectModuleInitData": "0x",
        "referenceModule": ZERO_ADDRESS,
        "referenceModuleInitData": "0x",
        "nonce": 0,
        "deadline": BLOCK_TIMESTAMP,
    }
    value.update(overrides)

    event = {
        "profileId": "0x18",
        "pubId": "0x3a",
        "contentURI": value["contentURI"],
        "profileIdPointed": value["profileIdPointed"],
        "pubIdPointed": value["pubIdPointed"],
        "referenceModuleData": "0x",
        "collectModule": value["collectModule"],
        "collectModuleReturnData": "0x",
        "referenceModule": value["referenceModule"],
        "referenceModuleReturnData": "0x",
        "timestamp": BLOCK_TIMESTAMP,
    }
    return assemble_publication(
        "COMMENT_CREATED", COMMENT_V1_TYPES, V1_DOMAIN, value, event,
        submitter, profile_owner, rsa_key, pointer if pointer is not None else dict(DEFAULT_POINTER),
    )


def build_post_v1(submitter, profile_owner, rsa_key):
    """A fully signed V1 post by profile 0x18, pubId 0x3a."""
    value = {
        "profileId": "0x18",
        "contentURI": "ar://post-metadata",
        "collectModule": COLLECT_MODULE,
        "collectModuleInitData": "0x",
        "referenceModule": ZERO_ADDRESS,
        "referenceModuleInitData": "0x",
        "nonce": 0,
        "deadline": BLOCK_TIMESTAMP,
    }
    event = {
        "profileId": "0x18",
        "pubId": "0x3a",
        "contentURI": value["contentURI"],
        "collectModule": value["collectModule"],
        "collectModuleReturnData": "0x",
        "referenceModule": value["referenceModule"],
        "referenceModuleReturnData": "0x",
        "timestamp": BLOCK_TIMESTAMP,
    }
    return assemble_publication(
        "POST_CREATED", POST_V1_TYPES, V1_DOMAIN, value, event,
        submitter, profile_owner, rsa_key, None,
    )


def build_mirror_v1(submitter, profile_owner, rsa_key, pointer=None):
    """A fully signed V1 mirror by profile 0x18, pubId 0x3a."""
    value = {
        "profileId": "0x18",
        "profileIdPointed": "0x01",
        "pubIdPointed": "0x02",
        "referenceModuleData": "0x",
        "referenceModule": ZERO_ADDRESS,
        "referenceModuleInitData": "0x",
        "nonce": 0,
        "deadline": BLOCK_TIMESTAMP,
    }
    event = {
        "profileId": "0x18",
        "pubId": "0x3a",
        "profileIdPointed": value["profileIdPointed"],
        "pubIdPointed": value["pubIdPointed"],
        "referenceModuleData": "0x",
        "referenceModule": value["referenceModule"],
        "referenceModuleReturnData": "0x",
        "timestamp": BLOCK_TIMESTAMP,
    }
    return assemble_publication(
        "MIRROR_CREATED", MIRROR_V1_TYPES, V1_DOMAIN, value, event,
        submitter, profile_owner, rsa_key, pointer if pointer is not None else dict(DEFAULT_POINTER),
    )


def build_post_v2(submitter, profile_owner, rsa_key):
    """A fully signed V2 post with one action module."""
    value = {
        "profileId": "0x18",
        "contentURI": "ar://post-metadata",
        "actionModules": [COLLECT_MODULE],
        "actionModulesInitDatas": ["0x"],
        "referenceModule": ZERO_ADDRESS,
        "referenceModuleInitData": "0x",
        "nonce": 0,
        "deadline": BLOCK_TIMESTAMP,
    }
    params = {key: value[key] for key in (
        "profileId",
        "contentURI",
        "actionModules",
        "actionModulesInitDatas",
        "referenceModule",
        "referenceModuleInitData",
    )}
    event = {
        "postParams": params,
        "pubId": "0x3a",
        "actionModulesInitReturnDatas": ["0x"],
        "referenceModuleInitReturnData": "0x",
        "transactionExecutor": profile_owner.address,
        "timestamp": BLOCK_TIMESTAMP,
    }
    return assemble_publication(
        "POST_CREATED", POST_V2_TYPES, V2_DOMAIN, value, event,
        submitter, profile_owner, rsa_key, None,
    )


def _build_reply_v2(action, types, params_key, submitter, profile_owner, rsa_key, pointer):
    value = {
        "profileId": "0x18",
        "contentURI": "ar://reply-metadata",
        "pointedProfileId": "0x01",
        "pointedPubId": "0x02",
        "referrerProfileIds": ["0x05"],
        "referrerPubIds": ["0x07"],
        "referenceModuleData": "0x",
        "actionModules": [],
        "actionModulesInitDatas": [],
        "referenceModule": ZERO_ADDRESS,
        "referenceModuleInitData": "0x",
        "nonce": 0,
        "deadline": BLOCK_TIMESTAMP,
    }
    params = {key: value[key] for key in value if key not in ("nonce", "deadline")}
    event = {
        params_key: params,
        "pubId": "0x3a",
        "referenceModuleReturnData": "0x",
        "actionModulesInitReturnDatas": [],
        "referenceModuleInitReturnData": "0x",
        "transactionExecutor": profile_owner.address,
        "timestamp": BLOCK_TIMESTAMP,
    }
    return assemble_publication(
        action, types, V2_DOMAIN, value, event,
        submitter, profile_owner, rsa_key, pointer if pointer is not None else dict(DEFAULT_POINTER),
    )


def build_comment_v2(submitter, profile_owner, rsa_key, pointer=None):
    """A fully signed V2 comment carrying one referrer."""
    return _build_reply_v2(
        "COMMENT_CREATED", COMMENT_V2_TYPES, "commentParams", submitter, profile_owner, rsa_key, pointer
    )


def build_quote_v2(submitter, profile_owner, rsa_key, pointer=None):
    """A fully signed V2 quote carrying one referrer."""
    return _build_reply_v2(
        "QUOTE_CREATED", QUOTE_V2_TYPES, "quoteParams", submitter, profile_owner, rsa_key, pointer
    )


def build_mirror_v2(submitter, profile_owner, rsa_key, pointer=None):
    """A fully signed V2 mirror with metadata."""
    value = {
        "profileId": "0x18",
        "metadataURI": "ar://mirror-metadata",
        "pointedProfileId": "0x01",
        "pointedPubId": "0x02",
        "referrerProfileIds": [],
        "referrerPubIds": [],
        "referenceModuleData": "0x",
        "nonce": 0,
        "deadline": BLOCK_TIMESTAMP,
    }
    params = {key: value[key] for key in value if key not in ("nonce", "deadline")}
    event = {
        "mirrorParams": params,
        "pubId": "0x3a",
        "referenceModuleReturnData": "0x",
        "transactionExecutor": profile_owner.address,
        "timestamp": BLOCK_TIMESTAMP,
    }
    return assemble_publication(
        "MIRROR_CREATED", MIRROR_V2_TYPES, V2_DOMAIN, value, event,
        submitter, profile_owner, rsa_key, pointer if pointer is not None else dict(DEFAULT_POINTER),
    )


def timestamp_proofs_for(publication):
    return {
        "type": publication["type"],
        "dataAvailabilityId": publication["dataAvailabilityId"],
    }


def blocks_around(block_number=BLOCK_NUMBER, timestamp=BLOCK_TIMESTAMP):
    return [
        BlockInfo(number=block_number - 1, timestamp=timestamp - 2),
        BlockInfo(number=block_number, timestamp=timestamp),
        BlockInfo(number=block_number + 1, timestamp=timestamp + 2),
    ]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def submitter(monkeypatch):
    """A fresh account installed as the only Polygon production submitter."""
    account = Account.create()
    monkeypatch.setitem(SUBMITTERS[Deployment.PRODUCTION], Environment.POLYGON, [account.address])
    return account


@pytest.fixture
def profile_owner():
    return Account.create()


@pytest.fixture
def chain_config():
    return ChainConfig(environment=Environment.POLYGON, node_url="http://localhost:8545")


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.get_da_publication = AsyncMock(return_value=None)
    gateway.get_timestamp_proofs = AsyncMock(return_value=None)
    gateway.get_block_range = AsyncMock(return_value=blocks_around())
    gateway.get_tx_result_from_cache = AsyncMock(return_value=None)
    gateway.has_signature_been_used_before = AsyncMock(return_value=False)
    gateway.save_tx_result = AsyncMock()
    return gateway


@pytest.fixture
def bundlr():
    bundlr = MagicMock()
    bundlr.get_by_id = AsyncMock(return_value=None)
    bundlr.get_owner_of_transaction = AsyncMock(return_value=None)
    bundlr.get_bulk_txs = AsyncMock(return_value={"success": [], "failed": {}})
    bundlr.get_data_availability_transactions = AsyncMock()
    bundlr.aclose = AsyncMock()
    return bundlr


@pytest.fixture
def lens_hub(profile_owner):
    lens_hub = MagicMock()
    lens_hub.get_profile_details = AsyncMock(
        return_value=ProfileDetails(nonce=0, pub_count=57, owner=profile_owner.address)
    )
    lens_hub.get_pub_count = AsyncMock(return_value=57)
    lens_hub.simulate = AsyncMock(return_value=58)
    lens_hub.ethereum = MagicMock()
    lens_hub.ethereum.block_hash_exists = AsyncMock(return_value=True)
    return lens_hub


@pytest.fixture
def checker(chain_config, gateway, bundlr, lens_hub):
    context = VerificationContext(
        chain_config=chain_config,
        gateway=gateway,
        verifier=SignatureProofVerifier(bundlr),
        lens_hub=lens_hub,
    )
    return DAProofChecker(context)
