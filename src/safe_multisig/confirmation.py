"""
Transaction confirmation tracking.

Features:
- Receipt polling with configurable confirmation depth
- Block-hash change detection (shallow reorgs) while waiting
- Bounded waits: a timeout raises ``ConfirmationTimeoutError`` and never
  resubmits the transaction
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import ConfirmationTimeoutError

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


class ConfirmationStatus(str, Enum):
    """Status of transaction confirmation."""
    PENDING = "pending"  # Not yet in a block
    CONFIRMING = "confirming"  # In a block, awaiting confirmations
    CONFIRMED = "confirmed"  # Required confirmations reached


@dataclass(frozen=True)
class Receipt:
    """The fields of a transaction receipt this package relies on."""
    tx_hash: str
    status: int
    block_number: int
    block_hash: Optional[str]
    gas_used: int
    contract_address: Optional[str] = None
    logs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "Receipt":
        return cls(
            tx_hash=raw["transactionHash"],
            status=_to_int(raw.get("status", 1)),
            block_number=_to_int(raw["blockNumber"]),
            block_hash=raw.get("blockHash"),
            gas_used=_to_int(raw.get("gasUsed", 0)),
            contract_address=raw.get("contractAddress"),
            logs=list(raw.get("logs") or []),
        )


@dataclass
class TrackedTransaction:
    """A transaction being tracked for confirmation."""
    tx_hash: str
    chain_id: str
    required_confirmations: int = 1
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: ConfirmationStatus = ConfirmationStatus.PENDING
    confirmations: int = 0
    receipt: Optional[Receipt] = None
    reorg_count: int = 0

    def update_confirmations(self, current_block: int) -> None:
        """Update confirmation count based on current block."""
        if self.receipt is None:
            self.confirmations = 0
            self.status = ConfirmationStatus.PENDING
            return
        self.confirmations = max(0, current_block - self.receipt.block_number + 1)
        if self.confirmations >= self.required_confirmations:
            self.status = ConfirmationStatus.CONFIRMED
        else:
            self.status = ConfirmationStatus.CONFIRMING


class ConfirmationTracker:
    """
    Waits for transactions on one chain to reach a confirmation depth.

    Each wait only blocks the coroutine awaiting that transaction; run
    several with ``asyncio.gather`` to await a batch concurrently.
    """

    def __init__(
        self,
        rpc_client: Any,  # RPCClient
        chain_id: str,
        poll_interval_seconds: float = 1.0,
    ):
        self._rpc = rpc_client
        self._chain_id = chain_id
        self._poll_interval = poll_interval_seconds
        self._tracked: Dict[str, TrackedTransaction] = {}

    def track_transaction(self, tx_hash: str, required_confirmations: int = 1) -> TrackedTransaction:
        tracked = TrackedTransaction(
            tx_hash=tx_hash,
            chain_id=self._chain_id,
            required_confirmations=max(1, required_confirmations),
        )
        self._tracked[tx_hash] = tracked
        logger.info(
            f"Started tracking transaction {tx_hash} on {self._chain_id}, "
            f"required confirmations: {tracked.required_confirmations}"
        )
        return tracked

    async def update_transaction(self, tx_hash: str) -> TrackedTransaction:
        """Refresh receipt and confirmation count for a tracked transaction."""
        tracked = self._tracked.get(tx_hash) or self.track_transaction(tx_hash)

        raw = await self._rpc.get_transaction_receipt(tx_hash)
        if raw is None:
            if tracked.receipt is not None:
                logger.warning(f"Transaction {tx_hash} receipt disappeared (reorg?)")
                tracked.reorg_count += 1
            tracked.receipt = None
            tracked.update_confirmations(0)
            return tracked

        receipt = Receipt.from_rpc(raw)
        if tracked.receipt and tracked.receipt.block_hash != receipt.block_hash:
            logger.warning(
                f"Transaction {tx_hash} block hash changed: "
                f"{tracked.receipt.block_hash} -> {receipt.block_hash}"
            )
            tracked.reorg_count += 1
        tracked.receipt = receipt

        current_block = await self._rpc.get_block_number()
        tracked.update_confirmations(current_block)
        return tracked

    async def wait_for_confirmation(
        self,
        tx_hash: str,
        required_confirmations: int = 1,
        timeout_seconds: float = 120.0,
    ) -> TrackedTransaction:
        """
        Poll until the transaction has ``required_confirmations``.

        Returns the tracked transaction whether the receipt status is success
        or failure; interpreting the outcome is up to the caller.

        Raises:
            ConfirmationTimeoutError: depth not reached within timeout_seconds
        """
        tracked = self.track_transaction(tx_hash, required_confirmations)
        try:
            async with asyncio.timeout(timeout_seconds):
                while True:
                    tracked = await self.update_transaction(tx_hash)
                    if tracked.status == ConfirmationStatus.CONFIRMED:
                        logger.info(
                            f"Transaction {tx_hash} confirmed with {tracked.confirmations} confirmations"
                        )
                        return tracked
                    await asyncio.sleep(self._poll_interval)
        except TimeoutError:
            raise ConfirmationTimeoutError(
                tx_hash=tx_hash,
                timeout_seconds=timeout_seconds,
                confirmations=tracked.confirmations,
            ) from None
        finally:
            self._tracked.pop(tx_hash, None)

    def get_transaction(self, tx_hash: str) -> Optional[TrackedTransaction]:
        return self._tracked.get(tx_hash)
