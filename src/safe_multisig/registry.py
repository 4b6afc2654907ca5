"""
Network and contract registry.

Resolves CAIP-2 chain ids to network configuration, caches the five
infrastructure contract addresses and one RPC client per chain, and keeps
per-chain gas and confirmation bookkeeping for executed transactions.

Cache entries never expire on their own; ``clear_cache`` is the only way
to invalidate them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from .config import ContractAddresses, NetworkConfig, SafeMultisigConfig, get_config, parse_chain_id
from .rpc_client import RPCClient

if TYPE_CHECKING:
    from .store import NetworkDeployment
    from .execution import ExecutionResult

logger = logging.getLogger(__name__)

ClientFactory = Callable[[NetworkConfig], RPCClient]


@dataclass
class GasReport:
    """Accumulated gas and confirmation figures for one chain."""
    chain_id: str
    executions: int = 0
    successful: int = 0
    failed: int = 0
    execution_gas_used: int = 0
    deployment_gas_used: int = 0
    confirmations: List[int] = field(default_factory=list)

    @property
    def total_gas_used(self) -> int:
        return self.execution_gas_used + self.deployment_gas_used

    @property
    def average_confirmations(self) -> float:
        if not self.confirmations:
            return 0.0
        return sum(self.confirmations) / len(self.confirmations)

    def to_dict(self) -> Dict[str, object]:
        return {
            "chain_id": self.chain_id,
            "executions": self.executions,
            "successful": self.successful,
            "failed": self.failed,
            "execution_gas_used": self.execution_gas_used,
            "deployment_gas_used": self.deployment_gas_used,
            "total_gas_used": self.total_gas_used,
            "average_confirmations": round(self.average_confirmations, 2),
        }


class NetworkRegistry:
    """Resolves networks and caches per-chain contracts and RPC clients."""

    def __init__(
        self,
        config: Optional[SafeMultisigConfig] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self._config = config or get_config()
        self._client_factory = client_factory or (
            lambda network: RPCClient(network, retry_config=self._config.retry)
        )
        self._contracts: Dict[str, ContractAddresses] = {}
        self._clients: Dict[str, RPCClient] = {}
        self._gas: Dict[str, GasReport] = {}

    @property
    def config(self) -> SafeMultisigConfig:
        return self._config

    def resolve(self, chain_id: str) -> NetworkConfig:
        """
        Resolve a CAIP-2 chain id.

        Raises:
            ValidationError: malformed chain id
            NetworkNotSupportedError: no configuration for the chain
        """
        return self._config.get_network(chain_id)

    def supported_networks(self) -> List[NetworkConfig]:
        return list(self._config.networks.values())

    def cache_contracts(self, chain_id: str, addresses: ContractAddresses) -> None:
        """Cache infrastructure addresses, merging over anything already known."""
        self.resolve(chain_id)
        current = self._contracts.get(chain_id)
        if current is not None:
            updates = {k: v for k, v in addresses.to_dict().items() if v}
            addresses = replace(current, **updates)
        self._contracts[chain_id] = addresses
        logger.debug(f"Cached contract addresses for {chain_id}: {addresses.to_dict()}")

    def get_contracts(self, chain_id: str) -> ContractAddresses:
        """Cached addresses, else the network's known addresses."""
        network = self.resolve(chain_id)
        cached = self._contracts.get(chain_id)
        if cached is not None:
            return cached
        return network.contracts

    def clear_cache(self, chain_id: Optional[str] = None) -> None:
        """Invalidate cached contracts for one chain, or for all chains."""
        if chain_id is None:
            self._contracts.clear()
            logger.info("Cleared contract cache for all chains")
        else:
            parse_chain_id(chain_id)
            self._contracts.pop(chain_id, None)
            logger.info(f"Cleared contract cache for {chain_id}")

    def get_rpc_client(self, chain_id: str) -> RPCClient:
        """Get or create the RPC client for a chain."""
        network = self.resolve(chain_id)
        if chain_id not in self._clients:
            self._clients[chain_id] = self._client_factory(network)
        return self._clients[chain_id]

    def _report(self, chain_id: str) -> GasReport:
        if chain_id not in self._gas:
            self._gas[chain_id] = GasReport(chain_id=chain_id)
        return self._gas[chain_id]

    def record_execution(self, chain_id: str, result: "ExecutionResult") -> None:
        """Account gas and confirmations for an executed multisig transaction."""
        report = self._report(chain_id)
        report.executions += 1
        if result.success:
            report.successful += 1
        else:
            report.failed += 1
        report.execution_gas_used += result.gas_used
        report.confirmations.append(result.confirmations)

    def record_deployment(self, deployment: "NetworkDeployment") -> None:
        """Account gas spent provisioning infrastructure and cache its addresses."""
        self._report(deployment.network_id).deployment_gas_used += deployment.total_gas_used
        self.cache_contracts(deployment.network_id, deployment.contracts)

    def gas_report(self, chain_id: str) -> GasReport:
        self.resolve(chain_id)
        return self._report(chain_id)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
