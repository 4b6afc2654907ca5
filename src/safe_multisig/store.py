"""Deployment records and their persistence.

A ``NetworkDeployment`` is the outcome of provisioning the infrastructure
set on one chain. Records serialize to camelCase JSON::

    {
      "networkId": "eip155:31337",
      "chainId": 31337,
      "contracts": {"singletonFactory": "0x...", ...},
      "deployments": [{"name": ..., "address": ..., "txHash": ..., "gasUsed": ...}],
      "totalGasUsed": 123
    }
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .config import CONTRACT_NAMES, ContractAddresses, parse_chain_id

logger = logging.getLogger(__name__)

ALREADY_DEPLOYED = "already-deployed"

_CAMEL = {
    "singleton_factory": "singletonFactory",
    "wallet_singleton": "walletSingleton",
    "proxy_factory": "proxyFactory",
    "fallback_handler": "fallbackHandler",
    "batch_helper": "batchHelper",
}


class ContractDeployment(BaseModel):
    """One contract's deployment outcome."""

    model_config = ConfigDict(frozen=True)

    name: str
    address: str
    tx_hash: str
    gas_used: int = Field(ge=0)

    @property
    def skipped(self) -> bool:
        return self.tx_hash == ALREADY_DEPLOYED

    @classmethod
    def already_deployed(cls, name: str, address: str) -> "ContractDeployment":
        return cls(name=name, address=address, tx_hash=ALREADY_DEPLOYED, gas_used=0)


class NetworkDeployment(BaseModel):
    """Infrastructure deployed on one network; gas totals always agree."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    network_id: str
    chain_id: int
    contracts: ContractAddresses
    deployments: List[ContractDeployment] = Field(default_factory=list)
    total_gas_used: int = 0

    @model_validator(mode="after")
    def _check_totals(self) -> "NetworkDeployment":
        parse_chain_id(self.network_id)
        expected = sum(d.gas_used for d in self.deployments)
        if self.total_gas_used != expected:
            raise ValueError(
                f"total_gas_used {self.total_gas_used} does not match "
                f"sum of deployments {expected}"
            )
        return self

    @classmethod
    def from_deployments(
        cls,
        network_id: str,
        contracts: ContractAddresses,
        deployments: List[ContractDeployment],
    ) -> "NetworkDeployment":
        return cls(
            network_id=network_id,
            chain_id=parse_chain_id(network_id),
            contracts=contracts,
            deployments=deployments,
            total_gas_used=sum(d.gas_used for d in deployments),
        )

    @property
    def is_complete(self) -> bool:
        return self.contracts.is_complete()

    def to_record(self) -> Dict[str, Any]:
        return {
            "networkId": self.network_id,
            "chainId": self.chain_id,
            "contracts": {_CAMEL[k]: v for k, v in self.contracts.to_dict().items()},
            "deployments": [
                {
                    "name": d.name,
                    "address": d.address,
                    "txHash": d.tx_hash,
                    "gasUsed": d.gas_used,
                }
                for d in self.deployments
            ],
            "totalGasUsed": self.total_gas_used,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "NetworkDeployment":
        contracts = record.get("contracts") or {}
        return cls(
            network_id=record["networkId"],
            chain_id=int(record["chainId"]),
            contracts=ContractAddresses(**{
                name: contracts.get(_CAMEL[name]) for name in CONTRACT_NAMES
            }),
            deployments=[
                ContractDeployment(
                    name=d["name"],
                    address=d["address"],
                    tx_hash=d["txHash"],
                    gas_used=int(d["gasUsed"]),
                )
                for d in record.get("deployments", [])
            ],
            total_gas_used=int(record.get("totalGasUsed", 0)),
        )


class DeploymentStore(Protocol):
    """Persistence for deployment records, one per network."""

    def get(self, network_id: str) -> Optional[NetworkDeployment]:
        ...

    def save(self, deployment: NetworkDeployment) -> None:
        ...

    def list(self) -> List[NetworkDeployment]:
        ...


class MemoryDeploymentStore:
    """In-process store; records vanish with the process."""

    def __init__(self) -> None:
        self._records: Dict[str, NetworkDeployment] = {}

    def get(self, network_id: str) -> Optional[NetworkDeployment]:
        return self._records.get(network_id)

    def save(self, deployment: NetworkDeployment) -> None:
        self._records[deployment.network_id] = deployment

    def list(self) -> List[NetworkDeployment]:
        return list(self._records.values())


class JsonDeploymentStore:
    """One JSON file per network in a directory, written atomically."""

    def __init__(self, directory: Union[str, Path]) -> None:
        self._directory = Path(directory)

    def _path(self, network_id: str) -> Path:
        parse_chain_id(network_id)
        return self._directory / f"{network_id.replace(':', '-')}.json"

    def get(self, network_id: str) -> Optional[NetworkDeployment]:
        path = self._path(network_id)
        if not path.is_file():
            return None
        return NetworkDeployment.from_record(json.loads(path.read_text()))

    def save(self, deployment: NetworkDeployment) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(deployment.network_id)
        fd, tmp = tempfile.mkstemp(dir=self._directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as fh:
                json.dump(deployment.to_record(), fh, indent=2)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.info(f"Saved deployment record for {deployment.network_id} to {path}")

    def list(self) -> List[NetworkDeployment]:
        if not self._directory.is_dir():
            return []
        return [
            NetworkDeployment.from_record(json.loads(p.read_text()))
            for p in sorted(self._directory.glob("eip155-*.json"))
        ]
