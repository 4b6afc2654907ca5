"""
Deterministic, idempotent deployment of the Safe infrastructure set.

Order of operations for one chain:

1. Locate the EIP-2470 singleton factory (canonical address, configured
   address, or the address in a prior deployment record). If none has
   code, the factory's creation bytecode is sent as a plain CREATE from the
   deployer key and its address is read from the receipt.
2. Predict the CREATE2 address of the other four contracts through the
   factory and check for existing code; present contracts are recorded as
   ``already-deployed`` with zero gas.
3. Before submitting anything, check that the deployer balance covers the
   estimated gas of every pending contract.
4. The factory deployment is a barrier. The remaining contracts are then
   submitted in nonce order and their confirmations awaited concurrently.

Whatever was confirmed is persisted to the deployment store when the
sequence stops, successfully or not. A re-run re-checks code at every
predicted address, so nothing is deployed twice.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .artifacts import ContractArtifacts
from .config import CANONICAL_SINGLETON_FACTORY, CONTRACT_NAMES, ContractAddresses, DeployerConfig
from .contracts import SINGLETON_FACTORY
from .create2 import compute_create2_address
from .exceptions import InsufficientBalanceError, NetworkError, SafeMultisigError
from .logging_utils import EventLogger, EventType, get_chain_logger
from .nonce_manager import NonceManager
from .registry import NetworkRegistry
from .rpc_client import RPCClient, RPCError
from .signer import TransactionSigner
from .store import ContractDeployment, DeploymentStore, MemoryDeploymentStore, NetworkDeployment
from .submitter import SubmittedTx, TransactionRequest, TransactionSubmitter, apply_gas_buffer

logger = logging.getLogger(__name__)

FACTORY_DEPLOYED_CONTRACTS = CONTRACT_NAMES[1:]

# Intrinsic transaction cost and per-byte calldata/code-deposit prices.
_TX_BASE_GAS = 21_000
_CREATE_GAS = 32_000
_CODE_DEPOSIT_GAS_PER_BYTE = 200
_ZERO_BYTE_GAS = 4
_NONZERO_BYTE_GAS = 16


def estimate_creation_gas(init_code: bytes, via_factory: bool = False) -> int:
    """
    Upper-bound heuristic for deploying ``init_code``.

    Used when the node cannot estimate (the factory does not exist yet).
    Treats the whole init code as deposited runtime code.
    """
    calldata = sum(_ZERO_BYTE_GAS if b == 0 else _NONZERO_BYTE_GAS for b in init_code)
    gas = _TX_BASE_GAS + _CREATE_GAS + calldata + _CODE_DEPOSIT_GAS_PER_BYTE * len(init_code)
    if via_factory:
        # CREATE2 hashes the init code: 6 gas per word, plus the call into the factory.
        gas += 6 * ((len(init_code) + 31) // 32) + 2_600
    return gas


@dataclass
class DeploymentPlan:
    """What a deployment run is going to do, computed before any submission."""
    factory_address: Optional[str]
    predicted: Dict[str, str]
    existing: List[str]
    pending: List[str]
    gas_estimates: Dict[str, int]
    gas_price: int

    @property
    def required_wei(self) -> int:
        return sum(self.gas_estimates[name] for name in self.pending) * self.gas_price


class InfrastructureDeployer:
    """Provisions the five-contract Safe infrastructure on a chain."""

    def __init__(
        self,
        registry: NetworkRegistry,
        artifacts: ContractArtifacts,
        store: Optional[DeploymentStore] = None,
        nonce_manager: Optional[NonceManager] = None,
        config: Optional[DeployerConfig] = None,
        event_logger: Optional[EventLogger] = None,
    ):
        self._registry = registry
        self._artifacts = artifacts
        self._store = store or MemoryDeploymentStore()
        self._nonces = nonce_manager or NonceManager()
        self._config = config or registry.config.deployer
        self._events = event_logger or get_chain_logger()

    def predict_addresses(self, factory_address: str = CANONICAL_SINGLETON_FACTORY) -> Dict[str, str]:
        """CREATE2 addresses of the factory-deployed contracts. Pure."""
        return {
            name: compute_create2_address(
                factory_address,
                self._artifacts.get(name).salt,
                self._artifacts.get(name).bytecode,
            )
            for name in FACTORY_DEPLOYED_CONTRACTS
        }

    async def _has_code(self, rpc: RPCClient, address: str) -> bool:
        return len(await rpc.get_code(address)) > 0

    async def _locate_factory(self, chain_id: str, rpc: RPCClient) -> Optional[str]:
        candidates = [CANONICAL_SINGLETON_FACTORY]
        configured = self._registry.get_contracts(chain_id).singleton_factory
        if configured:
            candidates.append(configured)
        prior = self._store.get(chain_id)
        if prior is not None and prior.contracts.singleton_factory:
            candidates.append(prior.contracts.singleton_factory)

        seen = set()
        for address in candidates:
            if address.lower() in seen:
                continue
            seen.add(address.lower())
            if await self._has_code(rpc, address):
                return address
        return None

    def _factory_request(self, factory_address: str, name: str) -> TransactionRequest:
        artifact = self._artifacts.get(name)
        return TransactionRequest(
            to_address=factory_address,
            data=SINGLETON_FACTORY.encode_call("deploy", artifact.bytecode, artifact.salt),
        )

    async def _estimate(
        self,
        submitter: TransactionSubmitter,
        signer: TransactionSigner,
        request: TransactionRequest,
        init_code: bytes,
        via_factory: bool,
    ) -> int:
        try:
            return await submitter.estimate_gas(signer.address, request)
        except RPCError as e:
            logger.debug(f"Gas estimation failed ({e.message}), using heuristic")
            return apply_gas_buffer(
                estimate_creation_gas(init_code, via_factory),
                self._config.gas_limit_buffer_percent,
            )

    async def plan(
        self,
        chain_id: str,
        signer: TransactionSigner,
        submitter: Optional[TransactionSubmitter] = None,
    ) -> DeploymentPlan:
        """Work out which contracts exist and what the rest will cost."""
        rpc = self._registry.get_rpc_client(chain_id)
        submitter = submitter or self._submitter(chain_id)

        factory_address = await self._locate_factory(chain_id, rpc)
        gas_price = self._config.gas_price_wei or await rpc.get_gas_price()

        predicted: Dict[str, str] = {}
        existing: List[str] = []
        pending: List[str] = []
        estimates: Dict[str, int] = {}

        if factory_address is not None:
            predicted["singleton_factory"] = factory_address
            existing.append("singleton_factory")
            predicted.update(self.predict_addresses(factory_address))
            for name in FACTORY_DEPLOYED_CONTRACTS:
                if await self._has_code(rpc, predicted[name]):
                    existing.append(name)
                else:
                    pending.append(name)
        else:
            pending = list(CONTRACT_NAMES)
            factory_bytecode = self._artifacts.get("singleton_factory").bytecode
            estimates["singleton_factory"] = await self._estimate(
                submitter, signer, TransactionRequest(to_address=None, data=factory_bytecode),
                factory_bytecode, via_factory=False,
            )

        for name in pending:
            if name == "singleton_factory":
                continue
            bytecode = self._artifacts.get(name).bytecode
            if factory_address is not None:
                estimates[name] = await self._estimate(
                    submitter, signer, self._factory_request(factory_address, name),
                    bytecode, via_factory=True,
                )
            else:
                estimates[name] = apply_gas_buffer(
                    estimate_creation_gas(bytecode, via_factory=True),
                    self._config.gas_limit_buffer_percent,
                )

        return DeploymentPlan(
            factory_address=factory_address,
            predicted=predicted,
            existing=existing,
            pending=pending,
            gas_estimates=estimates,
            gas_price=gas_price,
        )

    def _submitter(self, chain_id: str) -> TransactionSubmitter:
        return TransactionSubmitter(
            self._registry.get_rpc_client(chain_id),
            chain_id,
            self._nonces,
            event_logger=self._events,
            gas_limit_buffer_percent=self._config.gas_limit_buffer_percent,
            poll_interval_seconds=self._config.poll_interval_seconds,
        )

    async def deploy(
        self,
        chain_id: str,
        signer: TransactionSigner,
        confirmations: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> NetworkDeployment:
        """
        Deploy whatever part of the infrastructure set is missing on a chain.

        Raises:
            ValidationError / NetworkNotSupportedError: bad or unknown chain id
            ArtifactsNotFoundError: artifacts incomplete (before any network call)
            InsufficientBalanceError: balance below estimated cost (before any submission)
            NetworkError: RPC failure; remaining steps are aborted
            ConfirmationTimeoutError: a deployment did not confirm in time
        """
        network = self._registry.resolve(chain_id)
        self._artifacts.require_complete()

        confirmations, timeout_seconds = network.wait_settings(confirmations, timeout_seconds, self._config)
        submitter = self._submitter(chain_id)
        rpc = self._registry.get_rpc_client(chain_id)

        plan = await self.plan(chain_id, signer, submitter)
        self._events.log_event(
            EventType.DEPLOYMENT_STARTED,
            f"Deploying {len(plan.pending)} of {len(CONTRACT_NAMES)} contracts on {chain_id}",
            chain_id=chain_id,
            deployer=signer.address,
            pending=plan.pending,
            existing=plan.existing,
        )

        if plan.pending:
            balance = await rpc.get_balance(signer.address)
            if balance < plan.required_wei:
                raise InsufficientBalanceError(
                    f"Deployer balance {balance} wei cannot cover estimated {plan.required_wei} wei",
                    address=signer.address,
                    available=balance,
                    required=plan.required_wei,
                    details={"chain_id": chain_id, "pending": plan.pending},
                )

        records: Dict[str, ContractDeployment] = {}
        for name in plan.existing:
            records[name] = ContractDeployment.already_deployed(name, plan.predicted[name])
            self._events.log_event(
                EventType.CONTRACT_SKIPPED,
                f"{name} already deployed at {plan.predicted[name]}",
                chain_id=chain_id,
                contract=name,
                address=plan.predicted[name],
            )

        try:
            factory_address = plan.factory_address
            if factory_address is None:
                factory_address = await self._deploy_factory(
                    submitter, signer, plan, records, confirmations, timeout_seconds,
                )
                predicted = self.predict_addresses(factory_address)
            else:
                predicted = plan.predicted

            remaining = [n for n in plan.pending if n != "singleton_factory"]
            if remaining:
                await self._deploy_through_factory(
                    submitter, signer, factory_address, predicted, remaining, plan,
                    records, confirmations, timeout_seconds,
                )
        except SafeMultisigError as e:
            self._events.log_event(
                EventType.DEPLOYMENT_FAILED,
                f"Deployment on {chain_id} stopped: {e.message}",
                level=logging.ERROR,
                chain_id=chain_id,
                error_code=e.code,
                deployed=sorted(records),
            )
            raise
        finally:
            deployment = self._build_record(chain_id, records)
            if deployment is not None:
                self._persist(deployment)

        self._events.log_event(
            EventType.DEPLOYMENT_COMPLETED,
            f"Infrastructure ready on {chain_id}, gas used {deployment.total_gas_used}",
            chain_id=chain_id,
            total_gas_used=deployment.total_gas_used,
            contracts=deployment.contracts.to_dict(),
        )
        self._registry.record_deployment(deployment)
        return deployment

    async def _deploy_factory(
        self,
        submitter: TransactionSubmitter,
        signer: TransactionSigner,
        plan: DeploymentPlan,
        records: Dict[str, ContractDeployment],
        confirmations: int,
        timeout_seconds: float,
    ) -> str:
        bytecode = self._artifacts.get("singleton_factory").bytecode
        submitted = await submitter.submit(
            signer,
            TransactionRequest(
                to_address=None,
                data=bytecode,
                gas_limit=plan.gas_estimates["singleton_factory"],
                gas_price=plan.gas_price,
            ),
        )
        receipt, _ = await submitter.wait(submitted.tx_hash, confirmations, timeout_seconds)
        if not receipt.succeeded or not receipt.contract_address:
            raise NetworkError(
                f"Singleton factory deployment {submitted.tx_hash} reverted",
                chain_id=submitter.chain_id,
                details={"tx_hash": submitted.tx_hash},
            )
        address = receipt.contract_address
        records["singleton_factory"] = ContractDeployment(
            name="singleton_factory",
            address=address,
            tx_hash=submitted.tx_hash,
            gas_used=receipt.gas_used,
        )
        self._log_deployed(submitter.chain_id, records["singleton_factory"])
        return address

    async def _deploy_through_factory(
        self,
        submitter: TransactionSubmitter,
        signer: TransactionSigner,
        factory_address: str,
        predicted: Dict[str, str],
        names: List[str],
        plan: DeploymentPlan,
        records: Dict[str, ContractDeployment],
        confirmations: int,
        timeout_seconds: float,
    ) -> None:
        rpc = self._registry.get_rpc_client(submitter.chain_id)
        submitted: List[tuple[str, SubmittedTx]] = []
        submit_error: Optional[BaseException] = None

        # Submitted one at a time so nonces go out in order.
        for name in names:
            request = self._factory_request(factory_address, name)
            request.gas_limit = plan.gas_estimates[name]
            request.gas_price = plan.gas_price
            try:
                submitted.append((name, await submitter.submit(signer, request)))
            except SafeMultisigError as e:
                submit_error = e
                break

        results = await asyncio.gather(
            *(submitter.wait(tx.tx_hash, confirmations, timeout_seconds) for _, tx in submitted),
            return_exceptions=True,
        )

        first_error: Optional[BaseException] = submit_error
        for (name, tx), result in zip(submitted, results):
            if isinstance(result, BaseException):
                first_error = first_error or result
                continue
            receipt, _ = result
            if not receipt.succeeded or not await self._has_code(rpc, predicted[name]):
                first_error = first_error or NetworkError(
                    f"Deployment of {name} in {tx.tx_hash} produced no code at {predicted[name]}",
                    chain_id=submitter.chain_id,
                    details={"tx_hash": tx.tx_hash, "contract": name},
                )
                continue
            records[name] = ContractDeployment(
                name=name,
                address=predicted[name],
                tx_hash=tx.tx_hash,
                gas_used=receipt.gas_used,
            )
            self._log_deployed(submitter.chain_id, records[name])

        if first_error is not None:
            raise first_error

    def _log_deployed(self, chain_id: str, deployment: ContractDeployment) -> None:
        self._events.log_event(
            EventType.CONTRACT_DEPLOYED,
            f"{deployment.name} deployed at {deployment.address} ({deployment.gas_used} gas)",
            chain_id=chain_id,
            contract=deployment.name,
            address=deployment.address,
            tx_hash=deployment.tx_hash,
            gas_used=deployment.gas_used,
        )

    @staticmethod
    def _build_record(chain_id: str, records: Dict[str, ContractDeployment]) -> Optional[NetworkDeployment]:
        if not records:
            return None
        ordered = [records[name] for name in CONTRACT_NAMES if name in records]
        contracts = ContractAddresses(**{d.name: d.address for d in ordered})
        return NetworkDeployment.from_deployments(chain_id, contracts, ordered)

    def _persist(self, deployment: NetworkDeployment) -> None:
        prior = self._store.get(deployment.network_id)
        if prior is not None:
            # Contracts skipped now keep the transaction that originally deployed them.
            earlier = {d.name: d for d in prior.deployments if not d.skipped}
            merged = [
                earlier[d.name]
                if d.skipped and d.name in earlier and earlier[d.name].address == d.address
                else d
                for d in deployment.deployments
            ]
            if merged == prior.deployments and prior.contracts == deployment.contracts:
                return
            deployment = NetworkDeployment.from_deployments(deployment.network_id, deployment.contracts, merged)
        self._store.save(deployment)

    def get_deployment(self, chain_id: str) -> Optional[NetworkDeployment]:
        """Last persisted deployment record for a chain."""
        self._registry.resolve(chain_id)
        return self._store.get(chain_id)

    def load_known_deployments(self) -> int:
        """Seed the registry cache from persisted records; returns how many were loaded."""
        loaded = 0
        for deployment in self._store.list():
            if not self._registry.config.is_network_supported(deployment.network_id):
                logger.warning(f"Ignoring deployment record for unconfigured {deployment.network_id}")
                continue
            self._registry.cache_contracts(deployment.network_id, deployment.contracts)
            loaded += 1
        return loaded
