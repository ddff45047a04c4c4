"""
Chain environments, deployment tiers and allow-listed DA submitters.

The environment selects the chain (and so the LensHub contract and chain id);
the deployment tier selects which submitter addresses are trusted to upload
publications and timestamp proofs to the storage network.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, TypedDict


class Environment(Enum):
    POLYGON = "POLYGON"
    MUMBAI = "MUMBAI"
    AMOY = "AMOY"


class Deployment(Enum):
    PRODUCTION = "PRODUCTION"
    STAGING = "STAGING"
    LOCAL = "LOCAL"


class NetworkConfig(TypedDict):
    name: str
    chain_id: int
    lens_hub: str


SUPPORTED_ENVIRONMENTS: Dict[Environment, NetworkConfig] = {
    Environment.POLYGON: {
        "name": "Polygon PoS",
        "chain_id": 137,
        "lens_hub": "0xDb46d1Dc155634FbC732f92E853b10B288AD5a1d",
    },
    Environment.MUMBAI: {
        "name": "Polygon Mumbai",
        "chain_id": 80001,
        "lens_hub": "0x60Ae865ee4C725cd04353b5AAb364553f56ceF82",
    },
    Environment.AMOY: {
        "name": "Polygon Amoy",
        "chain_id": 80002,
        "lens_hub": "0xA2574D9DdB6A325Ad2Be838Bd854228B80215148",
    },
}

# Deployment tier -> environment -> submitter addresses
SUBMITTERS: Dict[Deployment, Dict[Environment, List[str]]] = {
    Deployment.PRODUCTION: {
        Environment.POLYGON: ["0xBe29464B9784a0d8956f29630d8bc4D7B5737435"],
        Environment.MUMBAI: ["0xF1143C45953066718dE115578cf31c237B062a15"],
        Environment.AMOY: ["0x085be9a079aB75608fB794f2D288A375856e3f60"],
    },
    Deployment.STAGING: {
        Environment.MUMBAI: ["0x55307bfae6DF8988F59FE20272bC68792b130415"],
        Environment.AMOY: ["0xC1b3BF1D611f1148F1799E90f7342860499Ba9D9"],
    },
    Deployment.LOCAL: {
        Environment.MUMBAI: ["0x8Fc176aA6FC843D3422f0C1832f1b9E17be00C1c"],
        Environment.AMOY: ["0xcD7739d0b2ceFAb809FEF4e839a55b2627B60205"],
    },
}

DEFAULT_ENVIRONMENT = Environment.POLYGON
DEFAULT_DEPLOYMENT = Deployment.PRODUCTION


@dataclass(frozen=True)
class ChainConfig:
    """Which chain to verify against and how to reach it."""
    environment: Environment
    node_url: str
    deployment: Deployment = DEFAULT_DEPLOYMENT

    @property
    def chain_id(self) -> int:
        return get_network_config(self.environment)["chain_id"]

    @property
    def lens_hub(self) -> str:
        return get_network_config(self.environment)["lens_hub"]


def get_network_config(environment: Environment) -> NetworkConfig:
    """Get configuration for an environment. Raises KeyError if not supported."""
    if environment not in SUPPORTED_ENVIRONMENTS:
        raise KeyError(f"Unsupported environment: {environment}")
    return SUPPORTED_ENVIRONMENTS[environment]


def get_submitters(environment: Environment, deployment: Deployment = DEFAULT_DEPLOYMENT) -> List[str]:
    """
    Get the trusted submitter addresses for an environment and deployment tier.

    Raises:
        ValueError: If the tier does not run on that environment
    """
    submitters = SUBMITTERS.get(deployment, {}).get(environment)
    if not submitters:
        raise ValueError(
            f"Deployment {deployment.value} is not supported on {environment.value}"
        )
    return submitters


def is_valid_submitter(
    environment: Environment,
    address: str,
    deployment: Deployment = DEFAULT_DEPLOYMENT,
) -> bool:
    """Check an address against the submitter allow-list (case-insensitive)."""
    if not address:
        return False
    return address.lower() in (s.lower() for s in get_submitters(environment, deployment))


def resolve_environment(value: str) -> Environment:
    """Parse an environment name (case-insensitive). Raises KeyError on unknown names."""
    try:
        return Environment[value.strip().upper()]
    except KeyError:
        raise KeyError(
            f"Unsupported environment: {value}. Supported: {[e.value for e in Environment]}"
        )


def resolve_deployment(value: str) -> Deployment:
    """Parse a deployment tier name (case-insensitive)."""
    try:
        return Deployment[value.strip().upper()]
    except KeyError:
        raise KeyError(
            f"Unsupported deployment: {value}. Supported: {[d.value for d in Deployment]}"
        )
