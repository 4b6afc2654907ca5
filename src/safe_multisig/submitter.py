"""EOA transaction submission shared by the deployer, wallet and execution paths.

Submission is never retried: once ``eth_sendRawTransaction`` has been
attempted the transaction may be in a mempool, so failures surface to the
caller and the reserved nonce is released only when the node rejected it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .confirmation import ConfirmationTracker, Receipt
from .exceptions import NetworkError
from .logging_utils import EventLogger, EventType, get_chain_logger
from .nonce_manager import NonceManager
from .rpc_client import RPCClient, RPCError
from .signer import TransactionSigner

logger = logging.getLogger(__name__)


@dataclass
class TransactionRequest:
    """A transaction to be signed and submitted."""
    to_address: Optional[str]  # None = contract creation
    data: bytes = b""
    value: int = 0
    gas_limit: Optional[int] = None
    gas_price: Optional[int] = None


@dataclass(frozen=True)
class SubmittedTx:
    """A submitted transaction."""
    tx_hash: str
    chain_id: str
    from_address: str
    nonce: int
    gas_limit: int
    gas_price: int


def apply_gas_buffer(gas: int, buffer_percent: int) -> int:
    return gas * (100 + buffer_percent) // 100


class TransactionSubmitter:
    """Signs, submits and awaits legacy (gasPrice) transactions for one chain."""

    def __init__(
        self,
        rpc_client: RPCClient,
        chain_id: str,
        nonce_manager: NonceManager,
        event_logger: Optional[EventLogger] = None,
        gas_limit_buffer_percent: int = 20,
        poll_interval_seconds: float = 1.0,
    ):
        self._rpc = rpc_client
        self._chain_id = chain_id
        self._nonces = nonce_manager
        self._events = event_logger or get_chain_logger()
        self._buffer = gas_limit_buffer_percent
        self._tracker = ConfirmationTracker(rpc_client, chain_id, poll_interval_seconds)

    @property
    def chain_id(self) -> str:
        return self._chain_id

    async def estimate_gas(self, sender: str, request: TransactionRequest) -> int:
        """eth_estimateGas with the configured safety buffer applied."""
        params: Dict[str, Any] = {
            "from": sender,
            "data": "0x" + request.data.hex(),
            "value": hex(request.value),
        }
        if request.to_address:
            params["to"] = request.to_address
        return apply_gas_buffer(await self._rpc.estimate_gas(params), self._buffer)

    async def submit(self, signer: TransactionSigner, request: TransactionRequest) -> SubmittedTx:
        """
        Sign and broadcast a transaction.

        The sender's nonce is reserved under its per-address lock, so several
        submissions from one key are issued in strict nonce order.
        """
        gas_limit = request.gas_limit or await self.estimate_gas(signer.address, request)
        gas_price = request.gas_price or await self._rpc.get_gas_price()

        async with self._nonces.lock(self._chain_id, signer.address):
            nonce = await self._nonces.reserve_nonce_locked(
                self._chain_id,
                signer.address,
                lambda: self._rpc.get_nonce(signer.address, "pending"),
            )
            tx: Dict[str, Any] = {
                "nonce": nonce,
                "gasPrice": gas_price,
                "gas": gas_limit,
                "value": request.value,
                "data": request.data,
                "chainId": await self._rpc.get_chain_id(),
            }
            if request.to_address:
                tx["to"] = request.to_address

            signed_tx = await signer.sign_transaction(tx)
            try:
                tx_hash = await self._rpc.send_raw_transaction(signed_tx)
            except RPCError:
                # The node refused it; the nonce was not consumed.
                self._nonces.release_nonce(self._chain_id, signer.address, nonce)
                raise

        self._events.log_event(
            EventType.TRANSACTION_SUBMITTED,
            f"Transaction submitted: {tx_hash} on {self._chain_id}",
            tx_hash=tx_hash,
            chain_id=self._chain_id,
            from_address=signer.address,
            to_address=request.to_address,
            nonce=nonce,
            gas_limit=gas_limit,
            gas_price=gas_price,
        )

        return SubmittedTx(
            tx_hash=tx_hash,
            chain_id=self._chain_id,
            from_address=signer.address,
            nonce=nonce,
            gas_limit=gas_limit,
            gas_price=gas_price,
        )

    async def wait(
        self,
        tx_hash: str,
        confirmations: int = 1,
        timeout_seconds: float = 120.0,
    ) -> tuple[Receipt, int]:
        """
        Wait for confirmations.

        Returns:
            (receipt, confirmation count)

        Raises:
            ConfirmationTimeoutError: depth not reached within the timeout
        """
        tracked = await self._tracker.wait_for_confirmation(tx_hash, confirmations, timeout_seconds)
        if tracked.receipt is None:
            raise NetworkError(
                f"No receipt for {tx_hash} after confirmation wait",
                chain_id=self._chain_id,
                method="eth_getTransactionReceipt",
            )
        return tracked.receipt, tracked.confirmations
