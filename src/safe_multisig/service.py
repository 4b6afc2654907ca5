"""
Multisig transaction lifecycle: propose, sign, estimate, execute, reject.

The service owns every ``PendingTransaction``, keyed by its SafeTx hash,
and wires the builder, the signature aggregator and the execution engine
together. All of them share one ``NonceManager``, so a wallet's nonce lock
covers both building and submission.

When a transaction consumes a wallet nonce, every other pending
transaction at that nonce is superseded: moved to ``failed`` with reason
``superseded`` and its signatures discarded.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from .exceptions import AlreadyExecutedError, TransactionNotFoundError, ValidationError
from .execution import (
    EXECUTION_FAILURE,
    ExecutionEngine,
    ExecutionResult,
    GasEstimate,
    PendingTransaction,
    SUPERSEDED,
    TransactionStatus,
)
from .logging_utils import EventLogger, EventType, get_chain_logger
from .nonce_manager import NonceManager
from .registry import NetworkRegistry
from .safe import WalletManager
from .signatures import SignatureAggregator, SignatureRecord, SigningMethod, sign_eip712, sign_eth_sign
from .signer import TransactionSigner
from .transaction import CanonicalTransaction, TransactionBuilder, TransactionData, checksum

logger = logging.getLogger(__name__)


class MultisigService:
    """Coordinates pending Safe transactions across wallets and chains."""

    def __init__(
        self,
        registry: NetworkRegistry,
        nonce_manager: Optional[NonceManager] = None,
        builder: Optional[TransactionBuilder] = None,
        wallets: Optional[WalletManager] = None,
        engine: Optional[ExecutionEngine] = None,
        event_logger: Optional[EventLogger] = None,
    ):
        self._registry = registry
        self._nonces = nonce_manager or NonceManager()
        self._events = event_logger or get_chain_logger()
        self._builder = builder or TransactionBuilder(registry, self._nonces)
        self._wallets = wallets or WalletManager(registry, self._nonces, self._events)
        self._engine = engine or ExecutionEngine(registry, self._nonces, event_logger=self._events)
        self._pending: Dict[str, PendingTransaction] = {}

    @property
    def registry(self) -> NetworkRegistry:
        return self._registry

    @property
    def wallets(self) -> WalletManager:
        return self._wallets

    @property
    def builder(self) -> TransactionBuilder:
        return self._builder

    async def propose(
        self,
        chain_id: str,
        wallet: str,
        transactions: Sequence[TransactionData],
        nonce: Optional[int] = None,
        safe_tx_gas: int = 0,
        base_gas: int = 0,
        gas_price: int = 0,
    ) -> PendingTransaction:
        """Build a SafeTx for the wallet and start collecting signatures for it."""
        info = await self._wallets.get_wallet_info(chain_id, wallet)
        if nonce is not None and nonce < info.nonce:
            raise ValidationError(
                f"Nonce {nonce} already used; wallet nonce is {info.nonce}",
                field="nonce",
            )
        tx = await self._builder.build(
            chain_id,
            info.address,
            transactions,
            nonce=nonce,
            safe_tx_gas=safe_tx_gas,
            base_gas=base_gas,
            gas_price=gas_price,
        )
        return self._track(tx, info.owners, info.threshold)

    def _track(self, tx: CanonicalTransaction, owners: List[str], threshold: int) -> PendingTransaction:
        existing = self._pending.get(tx.safe_tx_hash_hex)
        if existing is not None and existing.status == TransactionStatus.PROPOSED:
            return existing

        aggregator = SignatureAggregator(
            tx,
            owners,
            threshold,
            approval_checker=self._wallets.approval_checker(tx.chain_id, tx.wallet),
            event_logger=self._events,
        )
        pending = PendingTransaction(tx=tx, aggregator=aggregator)
        self._pending[pending.safe_tx_hash] = pending
        self._events.log_event(
            EventType.TRANSACTION_PROPOSED,
            f"Proposed {pending.safe_tx_hash} for {tx.wallet} at nonce {tx.nonce}",
            chain_id=tx.chain_id,
            wallet=tx.wallet,
            safe_tx_hash=pending.safe_tx_hash,
            nonce=tx.nonce,
            threshold=threshold,
        )
        return pending

    def get(self, safe_tx_hash: str) -> PendingTransaction:
        pending = self._pending.get(safe_tx_hash.lower())
        if pending is None:
            raise TransactionNotFoundError(safe_tx_hash)
        return pending

    def list_pending(
        self,
        chain_id: Optional[str] = None,
        wallet: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
    ) -> List[PendingTransaction]:
        """Tracked transactions, oldest first, optionally filtered."""
        wallet = checksum(wallet, "wallet") if wallet else None
        return [
            p
            for p in sorted(self._pending.values(), key=lambda p: (p.tx.nonce, p.created_at))
            if (chain_id is None or p.tx.chain_id == chain_id)
            and (wallet is None or p.tx.wallet == wallet)
            and (status is None or p.status == status)
        ]

    def _require_open(self, pending: PendingTransaction) -> None:
        if pending.status == TransactionStatus.EXECUTED:
            raise AlreadyExecutedError(
                pending.safe_tx_hash,
                tx_hash=pending.execution.tx_hash if pending.execution else None,
            )
        if pending.failure_reason == SUPERSEDED:
            raise ValidationError(
                f"Transaction {pending.safe_tx_hash} was superseded",
                field="safe_tx_hash",
            )

    async def add_signature(
        self,
        safe_tx_hash: str,
        signer: str,
        signature: bytes,
        method: Optional[SigningMethod] = None,
    ) -> SignatureRecord:
        """Verify and record a signature produced elsewhere."""
        pending = self.get(safe_tx_hash)
        self._require_open(pending)
        return await pending.aggregator.add_signature(signer, signature, method)

    async def sign(
        self,
        safe_tx_hash: str,
        signer: TransactionSigner,
        method: SigningMethod = SigningMethod.EIP712,
    ) -> SignatureRecord:
        """Sign with a local signer and record the signature."""
        pending = self.get(safe_tx_hash)
        self._require_open(pending)
        if method == SigningMethod.ETH_SIGN:
            record = await sign_eth_sign(signer, pending.tx)
        elif method == SigningMethod.EIP712:
            record = await sign_eip712(signer, pending.tx)
        else:
            raise ValidationError(
                "Approved-hash signatures come from an on-chain approveHash call",
                field="method",
            )
        return await pending.aggregator.add_signature(record.signer, record.signature, record.method)

    async def estimate(self, safe_tx_hash: str) -> GasEstimate:
        return await self._engine.estimate(self.get(safe_tx_hash).tx)

    async def execute(
        self,
        safe_tx_hash: str,
        executor: TransactionSigner,
        confirmations: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> ExecutionResult:
        """
        Execute a pending transaction and settle everything else at its nonce.

        Raises whatever ``ExecutionEngine.execute`` raises, plus
        TransactionNotFoundError for an unknown hash.
        """
        pending = self.get(safe_tx_hash)
        result = await self._engine.execute(pending, executor, confirmations, timeout_seconds)

        nonce_consumed = result.success or result.revert_reason == EXECUTION_FAILURE
        if nonce_consumed:
            self._supersede_siblings(pending)
        if result.success and pending.tx.to == pending.tx.wallet:
            # Owner or threshold may have changed.
            await self._refresh_owners(pending.tx.chain_id, pending.tx.wallet)
        return result

    def _supersede_siblings(self, executed: PendingTransaction) -> None:
        tx = executed.tx
        for other in self._pending.values():
            if (
                other is not executed
                and other.status == TransactionStatus.PROPOSED
                and other.tx.chain_id == tx.chain_id
                and other.tx.wallet == tx.wallet
                and other.tx.nonce == tx.nonce
            ):
                other.supersede()
                self._events.log_event(
                    EventType.TRANSACTION_SUPERSEDED,
                    f"{other.safe_tx_hash} superseded by {executed.safe_tx_hash} at nonce {tx.nonce}",
                    chain_id=tx.chain_id,
                    wallet=tx.wallet,
                    safe_tx_hash=other.safe_tx_hash,
                    superseded_by=executed.safe_tx_hash,
                    nonce=tx.nonce,
                )

    async def _refresh_owners(self, chain_id: str, wallet: str) -> None:
        open_txs = self.list_pending(chain_id, wallet, TransactionStatus.PROPOSED)
        if not open_txs:
            return
        info = await self._wallets.get_wallet_info(chain_id, wallet)
        for pending in open_txs:
            pending.aggregator.update_owners(info.owners, info.threshold)

    async def reject(self, safe_tx_hash: str) -> PendingTransaction:
        """
        Propose the cancellation of a pending transaction.

        The rejection is a zero-value self-call at the same nonce; once it is
        signed and executed the original is superseded.
        """
        pending = self.get(safe_tx_hash)
        self._require_open(pending)
        info = await self._wallets.get_wallet_info(pending.tx.chain_id, pending.tx.wallet)
        rejection = await self._builder.build_rejection(
            pending.tx.chain_id, pending.tx.wallet, pending.tx.nonce
        )
        return self._track(rejection, info.owners, info.threshold)
