"""
Execution of signed SafeTxs.

``estimate`` dry-runs the inner call from the wallet before any signatures
are collected. ``execute`` submits ``execTransaction`` with the sorted
signature blob, waits for the requested confirmation depth and moves the
``PendingTransaction`` to ``executed`` or ``failed``.

A Safe transaction can fail two ways:
- the outer transaction reverts (receipt status 0), e.g. GS026 for bad
  signatures; the wallet nonce is not consumed
- the inner call fails with ``safeTxGas``/``gasPrice`` set, and the wallet
  emits ``ExecutionFailure``; the nonce is consumed
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import ExecutionConfig
from .confirmation import Receipt
from .contracts import MULTI_SEND, SAFE
from .exceptions import AlreadyExecutedError, ValidationError
from .logging_utils import EventLogger, EventType, get_chain_logger
from .nonce_manager import NonceManager
from .registry import NetworkRegistry
from .rpc_client import RPCClient, RPCError
from .signatures import SignatureAggregator
from .signer import TransactionSigner
from .simulation import TransactionSimulator, extract_revert_reason
from .submitter import TransactionRequest, TransactionSubmitter, apply_gas_buffer
from .transaction import CanonicalTransaction, Operation, TransactionData, decode_multi_send, read_wallet_nonce

logger = logging.getLogger(__name__)

SUPERSEDED = "superseded"
EXECUTION_FAILURE = "inner call failed (ExecutionFailure)"


class TransactionStatus(str, Enum):
    PROPOSED = "proposed"
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutionResult:
    """Terminal outcome of one ``execTransaction`` submission."""
    tx_hash: str
    success: bool
    gas_used: int
    confirmations: int
    block_number: int
    revert_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "success": self.success,
            "gas_used": self.gas_used,
            "confirmations": self.confirmations,
            "block_number": self.block_number,
            "revert_reason": self.revert_reason,
        }


@dataclass(frozen=True)
class GasEstimate:
    """Gas figures from a dry run of the inner call."""
    safe_tx_gas: int
    gas_limit: int

    def to_dict(self) -> Dict[str, int]:
        return {"safe_tx_gas": self.safe_tx_gas, "gas_limit": self.gas_limit}


@dataclass
class PendingTransaction:
    """A SafeTx, its collected signatures and where it is in its lifecycle."""
    tx: CanonicalTransaction
    aggregator: SignatureAggregator
    status: TransactionStatus = TransactionStatus.PROPOSED
    failure_reason: Optional[str] = None
    execution: Optional[ExecutionResult] = None
    # Set while an execTransaction for this SafeTx awaits confirmation.
    submitted_tx_hash: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def safe_tx_hash(self) -> str:
        return self.tx.safe_tx_hash_hex

    def is_executable(self) -> bool:
        return self.status == TransactionStatus.PROPOSED and self.aggregator.is_executable()

    def mark_executed(self, result: ExecutionResult) -> None:
        self.status = TransactionStatus.EXECUTED
        self.execution = result
        self.failure_reason = None

    def mark_failed(self, reason: str, result: Optional[ExecutionResult] = None) -> None:
        self.status = TransactionStatus.FAILED
        self.failure_reason = reason
        if result is not None:
            self.execution = result

    def supersede(self) -> None:
        """Another transaction took this nonce; signatures are worthless now."""
        self.aggregator.clear()
        self.mark_failed(SUPERSEDED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "safe_tx_hash": self.safe_tx_hash,
            "status": self.status.value,
            "failure_reason": self.failure_reason,
            "transaction": self.tx.to_dict(),
            "signatures": [r.to_dict() for r in self.aggregator.records],
            "threshold": self.aggregator.threshold,
            "executable": self.is_executable(),
            "execution": self.execution.to_dict() if self.execution else None,
            "created_at": self.created_at.isoformat(),
        }


def find_execution_failure(receipt: Receipt, wallet: str, safe_tx_hash: bytes) -> bool:
    """True if the wallet logged ``ExecutionFailure`` for this SafeTx."""
    topic = SAFE.event_topic("ExecutionFailure").lower()
    hash_word = safe_tx_hash.hex()
    for log in receipt.logs:
        if str(log.get("address", "")).lower() != wallet.lower():
            continue
        topics = [str(t).lower() for t in log.get("topics", [])]
        if not topics or topics[0] != topic:
            continue
        # txHash is indexed in v1.4.1 and part of the data in v1.3.0.
        data = str(log.get("data", "")).lower().removeprefix("0x")
        if any(t.endswith(hash_word) for t in topics[1:]) or data.startswith(hash_word):
            return True
    return False


class ExecutionEngine:
    """Estimates and executes SafeTxs for any configured chain."""

    def __init__(
        self,
        registry: NetworkRegistry,
        nonce_manager: Optional[NonceManager] = None,
        simulator: Optional[TransactionSimulator] = None,
        config: Optional[ExecutionConfig] = None,
        event_logger: Optional[EventLogger] = None,
    ):
        self._registry = registry
        self._nonces = nonce_manager or NonceManager()
        self._simulator = simulator or TransactionSimulator(registry.config.simulation)
        self._config = config or registry.config.execution
        self._events = event_logger or get_chain_logger()
        # (chain, wallet, nonce) -> SafeTx hash with an unconfirmed submission
        self._in_flight: Dict[tuple[str, str, int], str] = {}

    def _inner_calls(self, tx: CanonicalTransaction) -> List[TransactionData]:
        batch_helper = self._registry.get_contracts(tx.chain_id).batch_helper
        if (
            tx.operation == Operation.DELEGATE_CALL
            and batch_helper
            and tx.to == batch_helper
            and tx.data[:4] == MULTI_SEND.function("multiSend").selector
        ):
            # MultiSend refuses direct calls; dry-run each entry instead.
            return decode_multi_send(tx.data)
        return [TransactionData(to=tx.to, value=tx.value, data=tx.data, operation=tx.operation)]

    async def estimate(self, tx: CanonicalTransaction) -> GasEstimate:
        """
        Dry-run the inner call(s) from the wallet and size the gas.

        Raises:
            SimulationFailedError: a call would revert (with decoded reason)
            NetworkError: RPC failure
        """
        rpc = self._registry.get_rpc_client(tx.chain_id)
        inner_gas = 0
        for call in self._inner_calls(tx):
            output = await self._simulator.simulate_and_validate(
                rpc,
                {
                    "from": tx.wallet,
                    "to": call.to,
                    "value": hex(call.value),
                    "data": "0x" + call.data.hex(),
                },
                force=True,
            )
            inner_gas += output.gas_estimate or 0

        safe_tx_gas = apply_gas_buffer(inner_gas, self._config.gas_limit_buffer_percent)
        estimate = GasEstimate(
            safe_tx_gas=safe_tx_gas,
            gas_limit=safe_tx_gas + self._config.base_overhead_gas,
        )
        self._events.log_event(
            EventType.SIMULATION,
            f"Estimated {tx.safe_tx_hash_hex}: safeTxGas {estimate.safe_tx_gas}",
            chain_id=tx.chain_id,
            wallet=tx.wallet,
            safe_tx_hash=tx.safe_tx_hash_hex,
            **estimate.to_dict(),
        )
        return estimate

    async def _check_wallet_nonce(self, rpc: RPCClient, tx: CanonicalTransaction) -> None:
        current = await read_wallet_nonce(rpc, tx.wallet)
        if current != tx.nonce:
            raise ValidationError(
                f"Wallet nonce is {current}; transaction {tx.safe_tx_hash_hex} uses {tx.nonce}",
                field="nonce",
                details={"wallet_nonce": current, "tx_nonce": tx.nonce},
            )

    async def _replay_revert_reason(
        self, rpc: RPCClient, params: Dict[str, Any], block_number: int,
    ) -> Optional[str]:
        try:
            await rpc.eth_call(params, hex(block_number))
        except RPCError as e:
            return extract_revert_reason(e)
        return None

    def _settle(self, pending: PendingTransaction, in_flight_key: tuple[str, str, int]) -> None:
        pending.submitted_tx_hash = None
        self._in_flight.pop(in_flight_key, None)

    async def execute(
        self,
        pending: PendingTransaction,
        executor: TransactionSigner,
        confirmations: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> ExecutionResult:
        """
        Submit ``execTransaction`` for an executable pending transaction.

        Reverts do not raise: the pending transaction moves to ``failed`` and
        the result carries the reason. The wallet lock covers the nonce check,
        simulation and submission; the confirmation wait runs outside it.

        Raises:
            AlreadyExecutedError: executed before, or submitted and still unconfirmed
            ValidationError: superseded, another SafeTx in flight at this nonce,
                or the wallet nonce moved on
            ThresholdNotMetError: not enough owner signatures
            SimulationFailedError: the call reverts in simulation
            ConfirmationTimeoutError: not confirmed in time (nothing resubmitted)
        """
        tx = pending.tx
        if pending.status == TransactionStatus.EXECUTED:
            raise AlreadyExecutedError(
                pending.safe_tx_hash,
                tx_hash=pending.execution.tx_hash if pending.execution else None,
            )
        if pending.failure_reason == SUPERSEDED:
            raise ValidationError(
                f"Transaction {pending.safe_tx_hash} was superseded at nonce {tx.nonce}",
                field="nonce",
            )
        signatures = pending.aggregator.encoded_signatures()

        network = self._registry.resolve(tx.chain_id)
        confirmations, timeout_seconds = network.wait_settings(confirmations, timeout_seconds, self._config)
        rpc = self._registry.get_rpc_client(tx.chain_id)
        submitter = TransactionSubmitter(
            rpc,
            tx.chain_id,
            self._nonces,
            event_logger=self._events,
            gas_limit_buffer_percent=self._config.gas_limit_buffer_percent,
            poll_interval_seconds=self._config.poll_interval_seconds,
        )
        calldata = tx.exec_calldata(signatures)
        params = {"from": executor.address, "to": tx.wallet, "data": "0x" + calldata.hex()}

        in_flight_key = (tx.chain_id, tx.wallet.lower(), tx.nonce)
        # Held for read nonce -> simulate -> submit only, never for the confirmation wait.
        async with self._nonces.lock(tx.chain_id, tx.wallet):
            # Re-check under the lock: a concurrent execution may have won.
            if pending.status == TransactionStatus.EXECUTED:
                raise AlreadyExecutedError(
                    pending.safe_tx_hash,
                    tx_hash=pending.execution.tx_hash if pending.execution else None,
                )
            if pending.submitted_tx_hash is not None:
                raise AlreadyExecutedError(pending.safe_tx_hash, tx_hash=pending.submitted_tx_hash)
            competing = self._in_flight.get(in_flight_key)
            if competing is not None:
                raise ValidationError(
                    f"SafeTx {competing} is already submitted at nonce {tx.nonce}",
                    field="nonce",
                    details={"in_flight": competing},
                )
            await self._check_wallet_nonce(rpc, tx)

            simulated = await self._simulator.simulate_and_validate(rpc, params)
            gas_limit = None
            if simulated.gas_estimate:
                gas_limit = apply_gas_buffer(simulated.gas_estimate, self._config.gas_limit_buffer_percent)

            submitted = await submitter.submit(
                executor,
                TransactionRequest(
                    to_address=tx.wallet,
                    data=calldata,
                    gas_limit=gas_limit,
                    gas_price=self._config.gas_price_wei,
                ),
            )
            pending.submitted_tx_hash = submitted.tx_hash
            self._in_flight[in_flight_key] = pending.safe_tx_hash

        try:
            receipt, depth = await submitter.wait(submitted.tx_hash, confirmations, timeout_seconds)
        except BaseException:
            # Nothing is resubmitted; a later execute() is guarded by the wallet nonce check.
            self._settle(pending, in_flight_key)
            raise

        revert_reason: Optional[str] = None
        if not receipt.succeeded:
            revert_reason = (
                await self._replay_revert_reason(rpc, params, receipt.block_number)
                or "execution reverted"
            )
        elif find_execution_failure(receipt, tx.wallet, tx.safe_tx_hash):
            revert_reason = EXECUTION_FAILURE

        result = ExecutionResult(
            tx_hash=submitted.tx_hash,
            success=revert_reason is None,
            gas_used=receipt.gas_used,
            confirmations=depth,
            block_number=receipt.block_number,
            revert_reason=revert_reason,
        )
        if result.success:
            pending.mark_executed(result)
        else:
            pending.mark_failed(revert_reason, result)
        self._settle(pending, in_flight_key)

        self._registry.record_execution(tx.chain_id, result)
        if result.success:
            self._events.log_event(
                EventType.TRANSACTION_CONFIRMED,
                f"SafeTx {pending.safe_tx_hash} executed in {result.tx_hash}",
                chain_id=tx.chain_id,
                wallet=tx.wallet,
                safe_tx_hash=pending.safe_tx_hash,
                tx_hash=result.tx_hash,
                gas_used=result.gas_used,
                confirmations=result.confirmations,
                block_number=result.block_number,
            )
        else:
            self._events.log_event(
                EventType.TRANSACTION_FAILED,
                f"SafeTx {pending.safe_tx_hash} failed: {revert_reason}",
                level=logging.WARNING,
                chain_id=tx.chain_id,
                wallet=tx.wallet,
                safe_tx_hash=pending.safe_tx_hash,
                tx_hash=result.tx_hash,
                revert_reason=revert_reason,
                gas_used=result.gas_used,
            )
        return result
