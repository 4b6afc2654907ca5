"""Signing ports for EOA transactions and SafeTx hashes.

``TransactionSigner`` is the seam for key custody: the deployer and the
execution engine only see this interface. ``LocalSigner`` keeps a raw key
in process memory and registers it for log/error redaction.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from eth_account import Account
from eth_account.messages import encode_defunct

from .exceptions import ValidationError, register_secret

logger = logging.getLogger(__name__)


class TransactionSigner(ABC):
    """Abstract interface for signing providers."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed address controlled by this signer."""

    @abstractmethod
    async def sign_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign an EOA transaction and return the raw signed tx hex."""

    @abstractmethod
    async def sign_hash(self, message_hash: bytes) -> bytes:
        """Sign a 32-byte hash directly; returns 65 bytes r ++ s ++ v (v in 27/28)."""

    @abstractmethod
    async def sign_message_hash(self, message_hash: bytes) -> bytes:
        """Sign a 32-byte hash with the eth_sign prefix; returns 65 bytes r ++ s ++ v."""


class LocalSigner(TransactionSigner):
    """Signer holding a private key in memory."""

    def __init__(self, private_key: str):
        try:
            self._account = Account.from_key(private_key)
        except Exception:
            # Chained exception text can echo the key back.
            raise ValidationError("Invalid private key", field="private_key") from None
        register_secret(private_key)

    def __repr__(self) -> str:
        return f"LocalSigner(address={self._account.address})"

    __str__ = __repr__

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_transaction(self, tx: Dict[str, Any]) -> str:
        signed = self._account.sign_transaction(tx)
        return "0x" + bytes(signed.raw_transaction).hex()

    async def sign_hash(self, message_hash: bytes) -> bytes:
        signed = self._account.unsafe_sign_hash(message_hash)
        return bytes(signed.signature)

    async def sign_message_hash(self, message_hash: bytes) -> bytes:
        signed = self._account.sign_message(encode_defunct(primitive=message_hash))
        return bytes(signed.signature)
