"""Tool definitions and dispatch for agent-driven Safe operations.

Each tool has a pydantic input model; ``TOOLS`` carries the JSON schemas in
the ``{name, description, input_schema}`` shape tool-use APIs expect.

``SafeToolHandler.handle`` validates the input, runs the operation and
always returns a ``ToolResult``:

- ``ToolSuccess``: ``{"result": {...}}``
- ``ToolFailure``: ``{"error": {"code", "message", "details"?}}``

Private keys arrive as ``SecretStr`` and never appear in results, errors
or logs.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic import ValidationError as PydanticValidationError

from .artifacts import ContractArtifacts, load_artifacts
from .config import SafeMultisigConfig, get_config, parse_chain_id
from .deployer import InfrastructureDeployer
from .exceptions import ErrorCode, SafeMultisigError, ValidationError, redact_secrets
from .execution import TransactionStatus
from .logging_utils import ChainLogger, EventLogger
from .nonce_manager import NonceManager
from .registry import NetworkRegistry
from .service import MultisigService
from .signatures import SigningMethod
from .signer import LocalSigner
from .store import DeploymentStore, JsonDeploymentStore, MemoryDeploymentStore
from .transaction import Operation, TransactionData

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ToolSuccess(BaseModel):
    ok: Literal[True] = True
    result: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"result": self.result}


class ToolFailure(BaseModel):
    ok: Literal[False] = False
    code: ErrorCode
    message: str
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_exception(cls, error: SafeMultisigError) -> "ToolFailure":
        return cls(code=error.error_code, message=error.message, details=error.details or None)

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}


ToolResult = Union[ToolSuccess, ToolFailure]


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class _ToolInput(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _NetworkInput(_ToolInput):
    network_id: str = Field(description="CAIP-2 chain id, e.g. eip155:11155111")

    @field_validator("network_id")
    @classmethod
    def _check_network_id(cls, v: str) -> str:
        try:
            parse_chain_id(v)
        except ValidationError as e:
            raise ValueError(e.message) from None
        return v


class _SigningInput(_ToolInput):
    private_key: SecretStr = Field(description="Hex private key used to sign and pay gas")


class DeployInfrastructureInput(_NetworkInput, _SigningInput):
    confirmations: Optional[int] = Field(default=None, ge=1)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class WalletInput(_NetworkInput):
    safe_address: str


class PredictAddressInput(_NetworkInput):
    owners: List[str] = Field(min_length=1)
    threshold: int = Field(ge=1)
    salt_nonce: int = Field(default=0, ge=0)


class DeployWalletInput(PredictAddressInput, _SigningInput):
    confirmations: Optional[int] = Field(default=None, ge=1)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class CallInput(_ToolInput):
    to: str
    value: int = Field(default=0, ge=0, description="Amount in wei")
    data: str = "0x"
    operation: Operation = Operation.CALL


class ProposeTransactionInput(WalletInput):
    transactions: List[CallInput] = Field(min_length=1)
    nonce: Optional[int] = Field(default=None, ge=0)
    safe_tx_gas: int = Field(default=0, ge=0)


class AddOwnerInput(WalletInput):
    owner: str
    threshold: Optional[int] = Field(default=None, ge=1)


class RemoveOwnerInput(AddOwnerInput):
    pass


class ChangeThresholdInput(WalletInput):
    threshold: int = Field(ge=1)


class TransactionRefInput(_ToolInput):
    safe_tx_hash: str = Field(pattern=r"^0x[0-9a-fA-F]{64}$")


class SignTransactionInput(TransactionRefInput, _SigningInput):
    method: SigningMethod = SigningMethod.EIP712


class AddSignatureInput(TransactionRefInput):
    signer: str
    signature: str = Field(pattern=r"^0x[0-9a-fA-F]{130}$")
    method: Optional[SigningMethod] = None


class ExecuteTransactionInput(TransactionRefInput, _SigningInput):
    confirmations: Optional[int] = Field(default=None, ge=1)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class ListTransactionsInput(_ToolInput):
    network_id: Optional[str] = None
    safe_address: Optional[str] = None
    status: Optional[TransactionStatus] = None


class GasReportInput(_NetworkInput):
    pass


_TOOL_SPECS: Dict[str, tuple[Type[_ToolInput], str]] = {
    "safe_deploy_infrastructure": (
        DeployInfrastructureInput,
        "Deploy the Safe singleton factory, singleton, proxy factory, fallback handler "
        "and MultiSend on a network. Contracts already present are skipped.",
    ),
    "safe_get_info": (WalletInput, "Get owners, threshold, nonce and version of a Safe."),
    "safe_get_owners": (WalletInput, "List the owners of a Safe."),
    "safe_predict_address": (
        PredictAddressInput,
        "Predict the address a Safe with these owners, threshold and salt nonce will have.",
    ),
    "safe_deploy_wallet": (DeployWalletInput, "Deploy a new Safe wallet proxy."),
    "safe_propose_transaction": (
        ProposeTransactionInput,
        "Propose a Safe transaction. Several calls are batched through MultiSend in order.",
    ),
    "safe_add_owner": (AddOwnerInput, "Propose adding an owner to a Safe."),
    "safe_remove_owner": (RemoveOwnerInput, "Propose removing an owner from a Safe."),
    "safe_change_threshold": (ChangeThresholdInput, "Propose changing a Safe's threshold."),
    "safe_sign_transaction": (SignTransactionInput, "Sign a proposed transaction as an owner."),
    "safe_add_signature": (AddSignatureInput, "Attach an owner signature produced elsewhere."),
    "safe_estimate_transaction": (
        TransactionRefInput,
        "Dry-run a proposed transaction and estimate safeTxGas.",
    ),
    "safe_execute_transaction": (
        ExecuteTransactionInput,
        "Execute a transaction that has collected threshold signatures.",
    ),
    "safe_reject_transaction": (
        TransactionRefInput,
        "Propose a rejection (zero-value self-call) at a pending transaction's nonce.",
    ),
    "safe_get_transaction": (TransactionRefInput, "Get a proposed transaction and its signatures."),
    "safe_list_transactions": (ListTransactionsInput, "List tracked transactions."),
    "safe_gas_report": (GasReportInput, "Gas used and confirmations observed on a network."),
}

TOOLS: List[Dict[str, Any]] = [
    {
        "name": name,
        "description": description,
        "input_schema": model.model_json_schema(),
    }
    for name, (model, description) in _TOOL_SPECS.items()
]

TOOL_NAMES = frozenset(_TOOL_SPECS)


def _validation_details(error: PydanticValidationError) -> Dict[str, Any]:
    return {
        "errors": [
            {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
            for e in error.errors(include_input=False, include_url=False)
        ]
    }


class SafeToolHandler:
    """Dispatches tool calls to the multisig service and the deployer."""

    def __init__(self, service: MultisigService, deployer: InfrastructureDeployer):
        self._service = service
        self._deployer = deployer
        self._handlers: Dict[str, Callable[[Any], Awaitable[Dict[str, Any]]]] = {
            "safe_deploy_infrastructure": self._handle_deploy_infrastructure,
            "safe_get_info": self._handle_get_info,
            "safe_get_owners": self._handle_get_owners,
            "safe_predict_address": self._handle_predict_address,
            "safe_deploy_wallet": self._handle_deploy_wallet,
            "safe_propose_transaction": self._handle_propose,
            "safe_add_owner": self._handle_add_owner,
            "safe_remove_owner": self._handle_remove_owner,
            "safe_change_threshold": self._handle_change_threshold,
            "safe_sign_transaction": self._handle_sign,
            "safe_add_signature": self._handle_add_signature,
            "safe_estimate_transaction": self._handle_estimate,
            "safe_execute_transaction": self._handle_execute,
            "safe_reject_transaction": self._handle_reject,
            "safe_get_transaction": self._handle_get_transaction,
            "safe_list_transactions": self._handle_list,
            "safe_gas_report": self._handle_gas_report,
        }

    async def handle(self, tool_name: str, tool_input: Dict[str, Any]) -> ToolResult:
        """Run one tool call. Never raises."""
        spec = _TOOL_SPECS.get(tool_name)
        if spec is None:
            return ToolFailure(
                code=ErrorCode.VALIDATION_ERROR,
                message=f"Unknown tool '{tool_name}'",
                details={"available": sorted(TOOL_NAMES)},
            )
        model, _ = spec
        try:
            args = model.model_validate(tool_input or {})
        except PydanticValidationError as e:
            return ToolFailure(
                code=ErrorCode.VALIDATION_ERROR,
                message=f"Invalid input for {tool_name}",
                details=_validation_details(e),
            )

        try:
            return ToolSuccess(result=await self._handlers[tool_name](args))
        except SafeMultisigError as e:
            logger.warning(f"{tool_name} failed: [{e.code}] {e.message}")
            return ToolFailure.from_exception(e)
        except Exception as e:
            logger.error(f"{tool_name} failed unexpectedly: {redact_secrets(repr(e))}")
            return ToolFailure(code=ErrorCode.INTERNAL_ERROR, message="Internal error")

    # ------------------------------------------------------------------
    # Individual tool handlers
    # ------------------------------------------------------------------

    async def _handle_deploy_infrastructure(self, args: DeployInfrastructureInput) -> Dict[str, Any]:
        deployment = await self._deployer.deploy(
            args.network_id,
            LocalSigner(args.private_key.get_secret_value()),
            confirmations=args.confirmations,
            timeout_seconds=args.timeout_seconds,
        )
        return deployment.to_record()

    async def _handle_get_info(self, args: WalletInput) -> Dict[str, Any]:
        info = await self._service.wallets.get_wallet_info(args.network_id, args.safe_address)
        return info.to_dict()

    async def _handle_get_owners(self, args: WalletInput) -> Dict[str, Any]:
        info = await self._service.wallets.get_wallet_info(args.network_id, args.safe_address)
        return {"owners": info.owners, "threshold": info.threshold}

    async def _handle_predict_address(self, args: PredictAddressInput) -> Dict[str, Any]:
        address = await self._service.wallets.predict_wallet_address(
            args.network_id, args.owners, args.threshold, args.salt_nonce
        )
        return {"address": address}

    async def _handle_deploy_wallet(self, args: DeployWalletInput) -> Dict[str, Any]:
        deployment = await self._service.wallets.deploy_wallet(
            args.network_id,
            LocalSigner(args.private_key.get_secret_value()),
            args.owners,
            args.threshold,
            args.salt_nonce,
            confirmations=args.confirmations,
            timeout_seconds=args.timeout_seconds,
        )
        return deployment.to_dict()

    async def _handle_propose(self, args: ProposeTransactionInput) -> Dict[str, Any]:
        calls = [
            TransactionData(to=c.to, value=c.value, data=c.data, operation=c.operation)
            for c in args.transactions
        ]
        pending = await self._service.propose(
            args.network_id,
            args.safe_address,
            calls,
            nonce=args.nonce,
            safe_tx_gas=args.safe_tx_gas,
        )
        return pending.to_dict()

    async def _handle_add_owner(self, args: AddOwnerInput) -> Dict[str, Any]:
        call = await self._service.wallets.add_owner(
            args.network_id, args.safe_address, args.owner, args.threshold
        )
        return (await self._service.propose(args.network_id, args.safe_address, [call])).to_dict()

    async def _handle_remove_owner(self, args: RemoveOwnerInput) -> Dict[str, Any]:
        call = await self._service.wallets.remove_owner(
            args.network_id, args.safe_address, args.owner, args.threshold
        )
        return (await self._service.propose(args.network_id, args.safe_address, [call])).to_dict()

    async def _handle_change_threshold(self, args: ChangeThresholdInput) -> Dict[str, Any]:
        call = await self._service.wallets.change_threshold(
            args.network_id, args.safe_address, args.threshold
        )
        return (await self._service.propose(args.network_id, args.safe_address, [call])).to_dict()

    async def _handle_sign(self, args: SignTransactionInput) -> Dict[str, Any]:
        record = await self._service.sign(
            args.safe_tx_hash,
            LocalSigner(args.private_key.get_secret_value()),
            args.method,
        )
        return self._signature_result(args.safe_tx_hash, record.to_dict())

    async def _handle_add_signature(self, args: AddSignatureInput) -> Dict[str, Any]:
        record = await self._service.add_signature(
            args.safe_tx_hash,
            args.signer,
            bytes.fromhex(args.signature[2:]),
            args.method,
        )
        return self._signature_result(args.safe_tx_hash, record.to_dict())

    def _signature_result(self, safe_tx_hash: str, record: Dict[str, Any]) -> Dict[str, Any]:
        pending = self._service.get(safe_tx_hash)
        return {
            "signature": record,
            "collected": len(pending.aggregator.records),
            "threshold": pending.aggregator.threshold,
            "executable": pending.is_executable(),
        }

    async def _handle_estimate(self, args: TransactionRefInput) -> Dict[str, Any]:
        return (await self._service.estimate(args.safe_tx_hash)).to_dict()

    async def _handle_execute(self, args: ExecuteTransactionInput) -> Dict[str, Any]:
        result = await self._service.execute(
            args.safe_tx_hash,
            LocalSigner(args.private_key.get_secret_value()),
            confirmations=args.confirmations,
            timeout_seconds=args.timeout_seconds,
        )
        return {
            **result.to_dict(),
            "status": self._service.get(args.safe_tx_hash).status.value,
        }

    async def _handle_reject(self, args: TransactionRefInput) -> Dict[str, Any]:
        return (await self._service.reject(args.safe_tx_hash)).to_dict()

    async def _handle_get_transaction(self, args: TransactionRefInput) -> Dict[str, Any]:
        return self._service.get(args.safe_tx_hash).to_dict()

    async def _handle_list(self, args: ListTransactionsInput) -> Dict[str, Any]:
        pending = self._service.list_pending(args.network_id, args.safe_address, args.status)
        return {"transactions": [p.to_dict() for p in pending]}

    async def _handle_gas_report(self, args: GasReportInput) -> Dict[str, Any]:
        return self._service.registry.gas_report(args.network_id).to_dict()


def create_tool_handler(
    config: Optional[SafeMultisigConfig] = None,
    artifacts: Optional[ContractArtifacts] = None,
    store: Optional[DeploymentStore] = None,
    event_logger: Optional[EventLogger] = None,
    registry: Optional[NetworkRegistry] = None,
) -> SafeToolHandler:
    """
    Wire a tool handler from configuration.

    Artifacts come from ``config.artifacts_path`` unless given; without
    either, infrastructure deployment fails with ARTIFACTS_NOT_FOUND while
    every other tool keeps working. Deployment records live in
    ``config.deployments_dir`` when set, in memory otherwise.
    """
    config = config or (registry.config if registry is not None else get_config())
    if artifacts is None:
        artifacts = load_artifacts(config.artifacts_path) if config.artifacts_path else ContractArtifacts()
    if store is None:
        store = JsonDeploymentStore(config.deployments_dir) if config.deployments_dir else MemoryDeploymentStore()

    registry = registry or NetworkRegistry(config)
    nonce_manager = NonceManager()
    event_logger = event_logger or ChainLogger(config=config.logging)
    deployer = InfrastructureDeployer(
        registry, artifacts, store, nonce_manager, event_logger=event_logger,
    )
    deployer.load_known_deployments()
    service = MultisigService(registry, nonce_manager, event_logger=event_logger)
    return SafeToolHandler(service, deployer)
