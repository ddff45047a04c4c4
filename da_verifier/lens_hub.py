"""
LensHub contract reads and call encoding for both schema versions.

V1 and V2 expose the same facts under different functions:

    fact                 V1                      V2
    signer nonce         sigNonces(address)      nonces(address)
    publication count    getPubCount(uint256)    getProfile(uint256).pubCount
    delegate             getDispatcher(uint256)  isDelegatedExecutorApproved(uint256,address)
    owner                ownerOf(uint256)        ownerOf(uint256)
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from eth_abi import decode
from web3 import Web3

from .evm import EthereumClient, encode_call
from .models import SchemaVersion
from .signatures import SignatureParts

V1_POST_STRUCT = "(uint256,string,address,bytes,address,bytes,(uint8,bytes32,bytes32,uint256))"
V2_POST_PARAMS = "(uint256,string,address[],bytes[],address,bytes)"
V2_SIGNATURE = "(address,uint8,bytes32,bytes32,uint256)"
V2_PROFILE_STRUCT = "(uint256,address,address,string,string,string,string)"


def to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return Web3.to_bytes(hexstr=value)


def to_address(value: str) -> str:
    return Web3.to_checksum_address(value)


# ============================================================================
# Post simulation calldata
# ============================================================================

def encode_post_simulation_v1(
    value: Dict[str, Any],
    signature: SignatureParts,
    signed_by_delegate: bool,
) -> bytes:
    """
    Calldata for ``postWithSig`` (or ``postWithSig_Dispatcher`` when signed by a
    delegate) built from the V1 typed data value.
    """
    function = "postWithSig_Dispatcher" if signed_by_delegate else "postWithSig"
    args = (
        to_int(value["profileId"]),
        value["contentURI"],
        to_address(value["collectModule"]),
        to_bytes(value["collectModuleInitData"]),
        to_address(value["referenceModule"]),
        to_bytes(value["referenceModuleInitData"]),
        (signature.v, signature.r, signature.s, to_int(value["deadline"])),
    )
    return encode_call(f"{function}({V1_POST_STRUCT})", [V1_POST_STRUCT], [args])


def encode_post_simulation_v2(
    value: Dict[str, Any],
    signer: str,
    signature: SignatureParts,
) -> bytes:
    """Calldata for the V2 ``postWithSig(PostParams, EIP712Signature)``."""
    params = (
        to_int(value["profileId"]),
        value["contentURI"],
        [to_address(module) for module in value["actionModules"]],
        [to_bytes(data) for data in value["actionModulesInitDatas"]],
        to_address(value["referenceModule"]),
        to_bytes(value["referenceModuleInitData"]),
    )
    sig = (
        to_address(signer),
        signature.v,
        signature.r,
        signature.s,
        to_int(value["deadline"]),
    )
    return encode_call(
        f"postWithSig({V2_POST_PARAMS},{V2_SIGNATURE})",
        [V2_POST_PARAMS, V2_SIGNATURE],
        [params, sig],
    )


# ============================================================================
# Profile state
# ============================================================================

@dataclass
class ProfileDetails:
    """On-chain profile state at a block, as read by one multicall."""
    nonce: int
    pub_count: int
    owner: str
    dispatcher: Optional[str] = None
    executor_approved: bool = False

    def is_signer_allowed(self, signer: str) -> bool:
        """The signer must own the profile or be its approved delegate."""
        signer = signer.lower()
        if signer == self.owner.lower():
            return True
        if self.dispatcher and signer == self.dispatcher.lower():
            return True
        return self.executor_approved


def build_profile_calls(
    version: SchemaVersion,
    hub: str,
    profile_id: int,
    signer: str,
) -> List[Tuple[str, bytes]]:
    signer = to_address(signer)
    if version == SchemaVersion.V1:
        return [
            (hub, encode_call("sigNonces(address)", ["address"], [signer])),
            (hub, encode_call("getPubCount(uint256)", ["uint256"], [profile_id])),
            (hub, encode_call("getDispatcher(uint256)", ["uint256"], [profile_id])),
            (hub, encode_call("ownerOf(uint256)", ["uint256"], [profile_id])),
        ]
    return [
        (hub, encode_call("nonces(address)", ["address"], [signer])),
        (hub, encode_call("getProfile(uint256)", ["uint256"], [profile_id])),
        (hub, encode_call(
            "isDelegatedExecutorApproved(uint256,address)",
            ["uint256", "address"],
            [profile_id, signer],
        )),
        (hub, encode_call("ownerOf(uint256)", ["uint256"], [profile_id])),
    ]


def decode_v2_pub_count(return_data: bytes) -> int:
    (profile,) = decode([V2_PROFILE_STRUCT], return_data)
    return int(profile[0])


def decode_profile_details(
    version: SchemaVersion,
    results: List[Tuple[bool, bytes]],
) -> ProfileDetails:
    """Decode the four multicall results in the order ``build_profile_calls`` issued them."""
    (nonce,) = decode(["uint256"], results[0][1])
    (owner,) = decode(["address"], results[3][1])

    if version == SchemaVersion.V1:
        (pub_count,) = decode(["uint256"], results[1][1])
        (dispatcher,) = decode(["address"], results[2][1])
        return ProfileDetails(
            nonce=int(nonce),
            pub_count=int(pub_count),
            owner=owner,
            dispatcher=dispatcher,
        )

    (approved,) = decode(["bool"], results[2][1])
    return ProfileDetails(
        nonce=int(nonce),
        pub_count=decode_v2_pub_count(results[1][1]),
        owner=owner,
        executor_approved=bool(approved),
    )


class LensHubGateway:
    """Reads LensHub state at historical blocks through an EthereumClient."""

    def __init__(self, ethereum: EthereumClient, hub_address: str):
        self.ethereum = ethereum
        self.hub_address = hub_address

    async def get_pub_count(self, version: SchemaVersion, profile_id: int, block_number: int) -> int:
        if version == SchemaVersion.V1:
            data = encode_call("getPubCount(uint256)", ["uint256"], [profile_id])
            raw = await self.ethereum.call(self.hub_address, data, block_number)
            (count,) = decode(["uint256"], raw)
            return int(count)

        data = encode_call("getProfile(uint256)", ["uint256"], [profile_id])
        raw = await self.ethereum.call(self.hub_address, data, block_number)
        return decode_v2_pub_count(raw)

    async def get_profile_details(
        self,
        version: SchemaVersion,
        profile_id: int,
        signer: str,
        block_number: int,
    ) -> ProfileDetails:
        calls = build_profile_calls(version, self.hub_address, profile_id, signer)
        results = await self.ethereum.multicall(calls, block_number)
        return decode_profile_details(version, results)

    async def simulate(self, calldata: bytes, block_number: int) -> int:
        """Run a ``postWithSig`` call at a block and return the publication id it would mint."""
        raw = await self.ethereum.call(self.hub_address, calldata, block_number)
        (pub_id,) = decode(["uint256"], raw)
        return int(pub_id)
