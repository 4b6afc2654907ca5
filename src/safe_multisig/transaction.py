"""
SafeTx construction and EIP-712 hashing.

A batch of ``TransactionData`` becomes one ``CanonicalTransaction``:

- one entry is wrapped directly
- several entries are packed, in caller order, into a ``multiSend(bytes)``
  DELEGATECALL against the batch helper

The signing hash follows Safe v1.4.1:

    domainSeparator = keccak256(abi.encode(DOMAIN_TYPEHASH, chainId, safe))
    safeTxHash      = keccak256(0x19 ++ 0x01 ++ domainSeparator ++ structHash)

Gas parameters default to zero and the native token. Sizing ``safeTxGas``
is left to ``ExecutionEngine.estimate``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Sequence

from eth_abi import decode, encode
from eth_abi.packed import encode_packed
from web3 import Web3

from .config import parse_chain_id
from .contracts import MULTI_SEND, SAFE, ZERO_ADDRESS
from .create2 import to_bytes
from .exceptions import ValidationError
from .nonce_manager import NonceManager
from .registry import NetworkRegistry
from .rpc_client import RPCClient

logger = logging.getLogger(__name__)

DOMAIN_SEPARATOR_TYPEHASH = Web3.keccak(
    text="EIP712Domain(uint256 chainId,address verifyingContract)"
)
SAFE_TX_TYPEHASH = Web3.keccak(
    text="SafeTx(address to,uint256 value,bytes data,uint8 operation,uint256 safeTxGas,"
    "uint256 baseGas,uint256 gasPrice,address gasToken,address refundReceiver,uint256 nonce)"
)

UINT256_MAX = 2**256 - 1


class Operation(IntEnum):
    CALL = 0
    DELEGATE_CALL = 1


def checksum(address: str, field: str = "address") -> str:
    """Checksum an address, raising ValidationError on anything malformed."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValidationError(f"Invalid {field}: {address!r}", field=field)
    return Web3.to_checksum_address(address)


def _check_uint(value: int, field: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= UINT256_MAX:
        raise ValidationError(f"{field} must be an unsigned 256-bit integer", field=field)


@dataclass(frozen=True)
class TransactionData:
    """One call a wallet should make."""
    to: str
    value: int = 0
    data: bytes = b""
    operation: Operation = Operation.CALL

    def __post_init__(self) -> None:
        object.__setattr__(self, "to", checksum(self.to, "to"))
        object.__setattr__(self, "data", to_bytes(self.data))
        object.__setattr__(self, "operation", Operation(self.operation))
        _check_uint(self.value, "value")


@dataclass(frozen=True)
class CanonicalTransaction:
    """The SafeTx every owner signs, bound to one wallet on one chain."""
    wallet: str
    chain_id: str
    to: str
    value: int
    data: bytes
    operation: Operation
    nonce: int
    safe_tx_gas: int = 0
    base_gas: int = 0
    gas_price: int = 0
    gas_token: str = ZERO_ADDRESS
    refund_receiver: str = ZERO_ADDRESS

    def __post_init__(self) -> None:
        parse_chain_id(self.chain_id)
        for name in ("wallet", "to", "gas_token", "refund_receiver"):
            object.__setattr__(self, name, checksum(getattr(self, name), name))
        object.__setattr__(self, "data", to_bytes(self.data))
        object.__setattr__(self, "operation", Operation(self.operation))
        for name in ("value", "nonce", "safe_tx_gas", "base_gas", "gas_price"):
            _check_uint(getattr(self, name), name)

    @property
    def domain_separator(self) -> bytes:
        return Web3.keccak(
            encode(
                ["bytes32", "uint256", "address"],
                [DOMAIN_SEPARATOR_TYPEHASH, parse_chain_id(self.chain_id), self.wallet],
            )
        )

    @property
    def struct_hash(self) -> bytes:
        return Web3.keccak(
            encode(
                [
                    "bytes32", "address", "uint256", "bytes32", "uint8", "uint256",
                    "uint256", "uint256", "address", "address", "uint256",
                ],
                [
                    SAFE_TX_TYPEHASH,
                    self.to,
                    self.value,
                    Web3.keccak(self.data),
                    int(self.operation),
                    self.safe_tx_gas,
                    self.base_gas,
                    self.gas_price,
                    self.gas_token,
                    self.refund_receiver,
                    self.nonce,
                ],
            )
        )

    @property
    def safe_tx_hash(self) -> bytes:
        """The EIP-712 hash owners sign and signatures are collected under."""
        return bytes(Web3.keccak(b"\x19\x01" + self.domain_separator + self.struct_hash))

    @property
    def safe_tx_hash_hex(self) -> str:
        return "0x" + self.safe_tx_hash.hex()

    def exec_calldata(self, signatures: bytes) -> bytes:
        """``execTransaction`` calldata carrying the packed signatures."""
        return SAFE.encode_call(
            "execTransaction",
            self.to,
            self.value,
            self.data,
            int(self.operation),
            self.safe_tx_gas,
            self.base_gas,
            self.gas_price,
            self.gas_token,
            self.refund_receiver,
            signatures,
        )

    def to_dict(self) -> dict:
        return {
            "wallet": self.wallet,
            "chain_id": self.chain_id,
            "to": self.to,
            "value": str(self.value),
            "data": "0x" + self.data.hex(),
            "operation": int(self.operation),
            "safe_tx_gas": str(self.safe_tx_gas),
            "base_gas": str(self.base_gas),
            "gas_price": str(self.gas_price),
            "gas_token": self.gas_token,
            "refund_receiver": self.refund_receiver,
            "nonce": self.nonce,
            "safe_tx_hash": self.safe_tx_hash_hex,
        }


def encode_multi_send(transactions: Sequence[TransactionData]) -> bytes:
    """
    Pack calls for MultiSend, preserving order.

    Each entry is ``uint8 operation ++ address to ++ uint256 value ++
    uint256 dataLength ++ bytes data`` with no padding between entries.
    """
    packed = b"".join(
        encode_packed(
            ["uint8", "address", "uint256", "uint256", "bytes"],
            [int(tx.operation), tx.to, tx.value, len(tx.data), tx.data],
        )
        for tx in transactions
    )
    return MULTI_SEND.encode_call("multiSend", packed)


def decode_multi_send(calldata: bytes) -> List[TransactionData]:
    """Unpack ``multiSend(bytes)`` calldata back into its calls."""
    if calldata[:4] != MULTI_SEND.function("multiSend").selector:
        raise ValidationError("Not multiSend calldata", field="data")
    (packed,) = decode(["bytes"], calldata[4:])
    calls: List[TransactionData] = []
    offset = 0
    while offset < len(packed):
        operation = packed[offset]
        to = "0x" + packed[offset + 1 : offset + 21].hex()
        value = int.from_bytes(packed[offset + 21 : offset + 53], "big")
        length = int.from_bytes(packed[offset + 53 : offset + 85], "big")
        data = packed[offset + 85 : offset + 85 + length]
        if len(data) != length:
            raise ValidationError("Truncated multiSend entry", field="data")
        calls.append(TransactionData(to=to, value=value, data=data, operation=operation))
        offset += 85 + length
    return calls


async def read_wallet_nonce(rpc: RPCClient, wallet: str) -> int:
    raw = await rpc.eth_call({"to": wallet, "data": "0x" + SAFE.encode_call("nonce").hex()})
    return SAFE.decode_output("nonce", raw)


class TransactionBuilder:
    """Turns a batch of calls into a CanonicalTransaction ready for signature."""

    def __init__(self, registry: NetworkRegistry, nonce_manager: Optional[NonceManager] = None):
        self._registry = registry
        self._nonces = nonce_manager or NonceManager()

    @property
    def nonce_manager(self) -> NonceManager:
        return self._nonces

    async def fetch_wallet_nonce(self, chain_id: str, wallet: str) -> int:
        return await read_wallet_nonce(self._registry.get_rpc_client(chain_id), wallet)

    def combine(self, chain_id: str, transactions: Sequence[TransactionData]) -> TransactionData:
        """Collapse a batch into the single call the wallet will make."""
        if not transactions:
            raise ValidationError("At least one transaction is required", field="transactions")
        if len(transactions) == 1:
            return transactions[0]

        batch_helper = self._registry.get_contracts(chain_id).batch_helper
        if not batch_helper:
            raise ValidationError(
                f"No batch helper address known for {chain_id}",
                field="batch_helper",
            )
        return TransactionData(
            to=batch_helper,
            value=0,
            data=encode_multi_send(transactions),
            operation=Operation.DELEGATE_CALL,
        )

    async def build(
        self,
        chain_id: str,
        wallet: str,
        transactions: Sequence[TransactionData],
        nonce: Optional[int] = None,
        safe_tx_gas: int = 0,
        base_gas: int = 0,
        gas_price: int = 0,
        gas_token: str = ZERO_ADDRESS,
        refund_receiver: str = ZERO_ADDRESS,
    ) -> CanonicalTransaction:
        """
        Build the SafeTx for a batch.

        Without an explicit nonce, the wallet's on-chain nonce is read and
        reserved under the wallet lock, so two builds never share one.

        Raises:
            ValidationError: empty batch, malformed address or value
            NetworkNotSupportedError: unknown chain
            NetworkError: the nonce could not be read
        """
        self._registry.resolve(chain_id)
        wallet = checksum(wallet, "wallet")
        call = self.combine(chain_id, transactions)

        if nonce is None:
            nonce = await self._nonces.reserve_nonce(
                chain_id, wallet, lambda: self.fetch_wallet_nonce(chain_id, wallet)
            )
        else:
            _check_uint(nonce, "nonce")
            self._nonces.mark_reserved(chain_id, wallet, nonce)

        tx = CanonicalTransaction(
            wallet=wallet,
            chain_id=chain_id,
            to=call.to,
            value=call.value,
            data=call.data,
            operation=call.operation,
            nonce=nonce,
            safe_tx_gas=safe_tx_gas,
            base_gas=base_gas,
            gas_price=gas_price,
            gas_token=gas_token,
            refund_receiver=refund_receiver,
        )
        logger.info(f"Built SafeTx {tx.safe_tx_hash_hex} for {wallet} on {chain_id} at nonce {nonce}")
        return tx

    async def build_rejection(self, chain_id: str, wallet: str, nonce: int) -> CanonicalTransaction:
        """Zero-value self-call that consumes ``nonce`` and so cancels whatever was pending there."""
        wallet = checksum(wallet, "wallet")
        return await self.build(chain_id, wallet, [TransactionData(to=wallet)], nonce=nonce)

    def release(self, tx: CanonicalTransaction) -> None:
        """Give back the nonce of a transaction that will never be executed."""
        self._nonces.release_nonce(tx.chain_id, tx.wallet, tx.nonce)
