"""Safe multisig infrastructure deployment and transaction orchestration."""

from .artifacts import ContractArtifact, ContractArtifacts, load_artifacts
from .config import (
    ContractAddresses,
    NetworkConfig,
    SafeMultisigConfig,
    build_default_config,
    get_config,
    set_config,
)
from .deployer import InfrastructureDeployer
from .exceptions import ErrorCode, SafeMultisigError
from .execution import ExecutionEngine, ExecutionResult, PendingTransaction, TransactionStatus
from .logging_utils import ChainLogger, EventLogger, EventType, setup_logging
from .registry import NetworkRegistry
from .safe import WalletManager
from .service import MultisigService
from .signatures import SignatureAggregator, SignatureRecord, SigningMethod
from .signer import LocalSigner, TransactionSigner
from .store import ContractDeployment, JsonDeploymentStore, MemoryDeploymentStore, NetworkDeployment
from .tools import TOOLS, SafeToolHandler, ToolFailure, ToolSuccess, create_tool_handler
from .transaction import CanonicalTransaction, Operation, TransactionBuilder, TransactionData

__all__ = [
    "ContractArtifact",
    "ContractArtifacts",
    "load_artifacts",
    "ContractAddresses",
    "NetworkConfig",
    "SafeMultisigConfig",
    "build_default_config",
    "get_config",
    "set_config",
    "InfrastructureDeployer",
    "ErrorCode",
    "SafeMultisigError",
    "ExecutionEngine",
    "ExecutionResult",
    "PendingTransaction",
    "TransactionStatus",
    "ChainLogger",
    "EventLogger",
    "EventType",
    "setup_logging",
    "NetworkRegistry",
    "WalletManager",
    "MultisigService",
    "SignatureAggregator",
    "SignatureRecord",
    "SigningMethod",
    "LocalSigner",
    "TransactionSigner",
    "ContractDeployment",
    "JsonDeploymentStore",
    "MemoryDeploymentStore",
    "NetworkDeployment",
    "TOOLS",
    "SafeToolHandler",
    "ToolFailure",
    "ToolSuccess",
    "create_tool_handler",
    "CanonicalTransaction",
    "Operation",
    "TransactionBuilder",
    "TransactionData",
]
