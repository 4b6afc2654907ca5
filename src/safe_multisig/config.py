"""
Configuration management for safe-multisig.

Provides centralized configuration for:
- Supported networks (CAIP-2 ids) and their RPC endpoints with fallbacks
- Known Safe contract addresses per network
- Deployer and execution timeouts / confirmation depths
- Read-only RPC retry policy
- Logging configuration
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import NetworkNotSupportedError, ValidationError

logger = logging.getLogger(__name__)

CAIP2_PATTERN = re.compile(r"^eip155:(\d+)$")

# EIP-2470 singleton factory, identical on every chain where it exists.
CANONICAL_SINGLETON_FACTORY = "0xce0042B868300000d44A59004Da54A005ffdcf9f"

ENV_PREFIX = "SAFE_MULTISIG_"


def parse_chain_id(chain_id: str) -> int:
    """Parse a CAIP-2 chain id (``eip155:<decimal>``) into its numeric id."""
    if not isinstance(chain_id, str):
        raise ValidationError(f"Chain id must be a string, got {type(chain_id).__name__}", field="chain_id")
    match = CAIP2_PATTERN.match(chain_id)
    if match is None:
        raise ValidationError(
            f"Invalid chain id {chain_id!r}: expected CAIP-2 form eip155:<number>",
            field="chain_id",
        )
    return int(match.group(1))


@dataclass(frozen=True)
class RPCEndpointConfig:
    """Configuration for a single RPC endpoint."""
    url: str
    priority: int = 0  # Lower is higher priority
    timeout_seconds: float = 30.0
    max_consecutive_failures: int = 3


@dataclass(frozen=True)
class ContractAddresses:
    """Addresses of the five infrastructure contracts on one network."""
    singleton_factory: Optional[str] = None
    wallet_singleton: Optional[str] = None
    proxy_factory: Optional[str] = None
    fallback_handler: Optional[str] = None
    batch_helper: Optional[str] = None

    def is_complete(self) -> bool:
        return all(getattr(self, name) for name in CONTRACT_NAMES)

    def missing(self) -> List[str]:
        return [name for name in CONTRACT_NAMES if not getattr(self, name)]

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {name: getattr(self, name) for name in CONTRACT_NAMES}


# Deployment order of the infrastructure set.
CONTRACT_NAMES: Tuple[str, ...] = (
    "singleton_factory",
    "wallet_singleton",
    "proxy_factory",
    "fallback_handler",
    "batch_helper",
)


@dataclass(frozen=True)
class NetworkConfig:
    """Configuration for one network, keyed by CAIP-2 chain id."""
    chain_id: str
    name: str
    display_name: str
    rpc_endpoints: Tuple[RPCEndpointConfig, ...] = ()
    contracts: ContractAddresses = field(default_factory=ContractAddresses)
    is_testnet: bool = False
    native_token: str = "ETH"
    confirmations_required: int = 1
    confirmation_timeout_seconds: float = 120.0

    def __post_init__(self) -> None:
        parse_chain_id(self.chain_id)

    @property
    def numeric_chain_id(self) -> int:
        return parse_chain_id(self.chain_id)

    def get_all_rpc_urls(self) -> List[str]:
        """Get all RPC URLs in priority order."""
        return [e.url for e in sorted(self.rpc_endpoints, key=lambda e: e.priority)]

    def wait_settings(
        self,
        confirmations: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        settings: Any = None,
    ) -> Tuple[int, float]:
        """Confirmation depth and timeout: argument, then component config, then this network."""
        if confirmations is None and settings is not None:
            confirmations = settings.confirmations
        if timeout_seconds is None and settings is not None:
            timeout_seconds = settings.confirmation_timeout_seconds
        if confirmations is None:
            confirmations = self.confirmations_required
        if timeout_seconds is None:
            timeout_seconds = self.confirmation_timeout_seconds
        return confirmations, timeout_seconds


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for read-only RPC methods."""
    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: float = 0.2


@dataclass
class DeployerConfig:
    """Configuration for infrastructure deployment."""
    gas_price_wei: Optional[int] = None  # None = use eth_gasPrice
    # None = the network's defaults
    confirmations: Optional[int] = None
    confirmation_timeout_seconds: Optional[float] = None
    poll_interval_seconds: float = 1.0
    gas_limit_buffer_percent: int = 20


@dataclass
class ExecutionConfig:
    """Configuration for multisig execution."""
    confirmations: Optional[int] = None
    confirmation_timeout_seconds: Optional[float] = None
    poll_interval_seconds: float = 1.0
    gas_limit_buffer_percent: int = 20
    gas_price_wei: Optional[int] = None
    # Extra gas Safe needs on top of the inner call (signature checks, events).
    base_overhead_gas: int = 60_000


@dataclass
class SimulationConfig:
    """Configuration for dry-running transactions."""
    enabled: bool = True
    timeout_seconds: float = 10.0
    block_on_simulation_failure: bool = True


@dataclass
class LoggingConfig:
    """Configuration for chain operation logging."""
    level: str = "INFO"
    json_format: bool = False
    mask_addresses: bool = False


@dataclass
class SafeMultisigConfig:
    """
    Master configuration for safe-multisig.

    Supports RPC URL overrides from environment variables with prefix
    SAFE_MULTISIG_ (for example ``SAFE_MULTISIG_SEPOLIA_RPC_URL``).
    """
    networks: Dict[str, NetworkConfig] = field(default_factory=dict)

    retry: RetryConfig = field(default_factory=RetryConfig)
    deployer: DeployerConfig = field(default_factory=DeployerConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    deployments_dir: Optional[str] = None
    artifacts_path: Optional[str] = None

    def get_network(self, chain_id: str) -> NetworkConfig:
        """Get configuration for a network, validating the id first."""
        parse_chain_id(chain_id)
        if chain_id not in self.networks:
            raise NetworkNotSupportedError(chain_id)
        return self.networks[chain_id]

    def is_network_supported(self, chain_id: str) -> bool:
        return chain_id in self.networks

    def add_network(self, network: NetworkConfig) -> None:
        self.networks[network.chain_id] = network


def _get_env(key: str, default: Any = None, prefix: str = ENV_PREFIX) -> Any:
    """Get environment variable with prefix."""
    return os.getenv(f"{prefix}{key}", default)


def _get_env_list(key: str, default: Optional[List[str]] = None, prefix: str = ENV_PREFIX) -> List[str]:
    """Get list environment variable (comma-separated)."""
    value = os.getenv(f"{prefix}{key}")
    if value:
        return [v.strip() for v in value.split(",") if v.strip()]
    return default or []


# Safe v1.4.1 canonical deployments.
SAFE_V141_CONTRACTS = ContractAddresses(
    singleton_factory=CANONICAL_SINGLETON_FACTORY,
    wallet_singleton="0x41675C099F32341bf84BFc5382aF534df5C7461a",
    proxy_factory="0x4e1DCf7AD4e460CfD30791CCC4F9c8a4f820ec67",
    fallback_handler="0xfd0732Dc9E303f09fCEf3a7388Ad10A83459Ec99",
    batch_helper="0x38869bf66a61cF6bDB996A6aE40D5853Fd43B526",
)


def _build_network_config(
    numeric_id: int,
    name: str,
    display_name: str,
    default_rpc: Optional[str],
    fallback_rpcs: List[str],
    block_time: float,
    contracts: ContractAddresses,
    native_token: str = "ETH",
    is_testnet: bool = False,
) -> Optional[NetworkConfig]:
    """Build a NetworkConfig with environment variable overrides.

    Returns None when neither a default nor an override RPC URL exists.
    """
    custom_rpc = _get_env(f"{name.upper()}_RPC_URL")
    primary_url = custom_rpc or default_rpc
    if not primary_url:
        return None

    endpoints = [RPCEndpointConfig(url=primary_url, priority=0)]
    extra = _get_env_list(f"{name.upper()}_FALLBACK_RPC_URLS", fallback_rpcs)
    # An override keeps the built-in endpoint as its first fallback.
    if default_rpc and default_rpc != primary_url:
        extra = [default_rpc] + [url for url in extra if url != default_rpc]
    for i, url in enumerate(extra):
        if url != primary_url:
            endpoints.append(RPCEndpointConfig(url=url, priority=i + 1))

    return NetworkConfig(
        chain_id=f"eip155:{numeric_id}",
        name=name,
        display_name=display_name,
        rpc_endpoints=tuple(endpoints),
        contracts=contracts,
        is_testnet=is_testnet,
        native_token=native_token,
        confirmations_required=1 if is_testnet else 2,
        confirmation_timeout_seconds=120.0 if block_time < 10 else 300.0,
    )


def build_default_config() -> SafeMultisigConfig:
    """Build default configuration with all supported networks."""
    candidates = [
        _build_network_config(
            numeric_id=1,
            name="ethereum",
            display_name="Ethereum",
            default_rpc="https://eth.llamarpc.com",
            fallback_rpcs=["https://ethereum-rpc.publicnode.com"],
            block_time=12.0,
            contracts=SAFE_V141_CONTRACTS,
        ),
        _build_network_config(
            numeric_id=11155111,
            name="sepolia",
            display_name="Ethereum Sepolia",
            default_rpc="https://ethereum-sepolia-rpc.publicnode.com",
            fallback_rpcs=["https://rpc.sepolia.org"],
            block_time=12.0,
            contracts=SAFE_V141_CONTRACTS,
            is_testnet=True,
        ),
        _build_network_config(
            numeric_id=137,
            name="polygon",
            display_name="Polygon",
            default_rpc="https://polygon-rpc.com",
            fallback_rpcs=["https://polygon.llamarpc.com"],
            block_time=2.0,
            contracts=SAFE_V141_CONTRACTS,
            native_token="POL",
        ),
        _build_network_config(
            numeric_id=42161,
            name="arbitrum",
            display_name="Arbitrum One",
            default_rpc="https://arb1.arbitrum.io/rpc",
            fallback_rpcs=["https://arbitrum-one-rpc.publicnode.com"],
            block_time=1.0,
            contracts=SAFE_V141_CONTRACTS,
        ),
        _build_network_config(
            numeric_id=8453,
            name="base",
            display_name="Base",
            default_rpc="https://mainnet.base.org",
            fallback_rpcs=["https://base.llamarpc.com"],
            block_time=2.0,
            contracts=SAFE_V141_CONTRACTS,
        ),
        _build_network_config(
            numeric_id=84532,
            name="base_sepolia",
            display_name="Base Sepolia",
            default_rpc="https://sepolia.base.org",
            fallback_rpcs=["https://base-sepolia-rpc.publicnode.com"],
            block_time=2.0,
            contracts=SAFE_V141_CONTRACTS,
            is_testnet=True,
        ),
        # Local Anvil/Hardhat node; infrastructure is deployed on demand.
        _build_network_config(
            numeric_id=31337,
            name="anvil",
            display_name="Local Anvil",
            default_rpc="http://127.0.0.1:8545",
            fallback_rpcs=[],
            block_time=1.0,
            contracts=ContractAddresses(singleton_factory=CANONICAL_SINGLETON_FACTORY),
            is_testnet=True,
        ),
    ]

    networks = {n.chain_id: n for n in candidates if n is not None}

    deployer = DeployerConfig()
    gas_price = _get_env("DEPLOYER_GAS_PRICE_WEI")
    if gas_price:
        deployer = replace(deployer, gas_price_wei=int(gas_price))

    return SafeMultisigConfig(
        networks=networks,
        deployer=deployer,
        logging=LoggingConfig(
            level=_get_env("LOG_LEVEL", "INFO"),
            json_format=_get_env("LOG_JSON", "false").lower() in ("1", "true", "yes"),
        ),
        deployments_dir=_get_env("DEPLOYMENTS_DIR"),
        artifacts_path=_get_env("ARTIFACTS_PATH"),
    )


# Global configuration instance
_global_config: Optional[SafeMultisigConfig] = None


def get_config() -> SafeMultisigConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = build_default_config()
    return _global_config


def set_config(config: Optional[SafeMultisigConfig]) -> None:
    """Set (or reset with None) the global configuration instance."""
    global _global_config
    _global_config = config


def validate_chain_id(network: NetworkConfig, received_chain_id: int) -> bool:
    """
    Validate that the chain id reported by a node matches the network.

    SECURITY: This prevents signing for the wrong network, which could
    replay owner signatures or deploy to an unintended chain.
    """
    expected = network.numeric_chain_id
    if received_chain_id != expected:
        logger.error(
            f"SECURITY: Chain ID mismatch for {network.chain_id}! "
            f"Expected {expected}, got {received_chain_id}."
        )
        return False
    return True
