"""
Signature collection for a SafeTx.

Safe accepts 65-byte ``r ++ s ++ v`` signatures in three forms, told apart
by ``v``:

- ``v`` 27/28: the owner signed the EIP-712 SafeTx hash directly
- ``v`` 31/32: the owner signed the hash with the ``eth_sign`` prefix
  (``v`` is the recovered value + 4)
- ``v`` 1: pre-approval; ``r`` is the owner address, ``s`` is zero and the
  owner must have called ``approveHash`` on the wallet

Signatures are concatenated in ascending owner-address order on
submission; the contract reverts (GS026) otherwise.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError
from web3 import Web3

from .exceptions import (
    DuplicateSignatureError,
    InvalidSignatureError,
    ThresholdNotMetError,
    UnauthorizedSignerError,
    ValidationError,
)
from .logging_utils import EventLogger, EventType, get_chain_logger
from .signer import TransactionSigner
from .transaction import CanonicalTransaction, checksum

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65
ETH_SIGN_V_OFFSET = 4

ApprovalChecker = Callable[[str, bytes], Awaitable[bool]]


class SigningMethod(str, Enum):
    EIP712 = "eip712"
    ETH_SIGN = "eth_sign"
    APPROVED_HASH = "approved_hash"


@dataclass(frozen=True)
class SignatureRecord:
    """An accepted owner signature in its on-chain form."""
    signer: str
    signature: bytes
    method: SigningMethod

    def to_dict(self) -> Dict[str, str]:
        return {
            "signer": self.signer,
            "signature": "0x" + self.signature.hex(),
            "method": self.method.value,
        }


def detect_method(signature: bytes) -> SigningMethod:
    """Infer the signing method from ``v``."""
    if len(signature) != SIGNATURE_LENGTH:
        raise InvalidSignatureError(
            f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(signature)}"
        )
    v = signature[64]
    if v == 1:
        return SigningMethod.APPROVED_HASH
    if v > 30:
        return SigningMethod.ETH_SIGN
    return SigningMethod.EIP712


def eth_sign_hash(message_hash: bytes) -> bytes:
    return bytes(Web3.keccak(b"\x19Ethereum Signed Message:\n32" + message_hash))


def recover_signer(message_hash: bytes, signature: bytes) -> str:
    """Recover the address behind an ``r ++ s ++ v`` signature (v in 27/28)."""
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    v = signature[64] - 27
    sig = keys.Signature(vrs=(v, r, s))
    return sig.recover_public_key_from_msg_hash(message_hash).to_checksum_address()


def approved_hash_signature(owner: str) -> bytes:
    """Pre-approval signature for ``owner`` (r = owner, s = 0, v = 1)."""
    owner_bytes = bytes.fromhex(checksum(owner, "owner")[2:])
    return owner_bytes.rjust(32, b"\x00") + b"\x00" * 32 + b"\x01"


async def sign_eip712(signer: TransactionSigner, tx: CanonicalTransaction) -> SignatureRecord:
    """Sign the SafeTx hash directly."""
    signature = await signer.sign_hash(tx.safe_tx_hash)
    return SignatureRecord(signer.address, signature, SigningMethod.EIP712)


async def sign_eth_sign(signer: TransactionSigner, tx: CanonicalTransaction) -> SignatureRecord:
    """Sign the SafeTx hash through the eth_sign prefix and shift ``v`` for Safe."""
    signature = await signer.sign_message_hash(tx.safe_tx_hash)
    return SignatureRecord(
        signer.address,
        signature[:64] + bytes([signature[64] + ETH_SIGN_V_OFFSET]),
        SigningMethod.ETH_SIGN,
    )


class SignatureAggregator:
    """
    Collects owner signatures for one SafeTx and decides execute-readiness.

    Accepts a signature only from a current owner, only once per owner and
    only if it verifies against ``tx.safe_tx_hash`` under one of the three
    methods. ``approval_checker(owner, hash)`` answers whether the owner has
    pre-approved the hash on chain; without one, approved-hash signatures are
    rejected.
    """

    def __init__(
        self,
        tx: CanonicalTransaction,
        owners: Sequence[str],
        threshold: int,
        approval_checker: Optional[ApprovalChecker] = None,
        event_logger: Optional[EventLogger] = None,
    ):
        owners = [checksum(o, "owners") for o in owners]
        if not 1 <= threshold <= len(owners):
            raise ValidationError(
                f"Threshold {threshold} must be between 1 and the owner count {len(owners)}",
                field="threshold",
            )
        self._tx = tx
        self._owners = owners
        self._threshold = threshold
        self._approval_checker = approval_checker
        self._events = event_logger or get_chain_logger()
        self._records: Dict[str, SignatureRecord] = {}

    @property
    def tx(self) -> CanonicalTransaction:
        return self._tx

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def owners(self) -> List[str]:
        return list(self._owners)

    @property
    def records(self) -> List[SignatureRecord]:
        """Accepted signatures in ascending signer order."""
        return sorted(self._records.values(), key=lambda r: int(r.signer, 16))

    def update_owners(self, owners: Sequence[str], threshold: int) -> None:
        """Refresh the owner set; signatures from removed owners stop counting."""
        owners = [checksum(o, "owners") for o in owners]
        if not 1 <= threshold <= len(owners):
            raise ValidationError(
                f"Threshold {threshold} must be between 1 and the owner count {len(owners)}",
                field="threshold",
            )
        self._owners = owners
        self._threshold = threshold
        dropped = [s for s in self._records if s not in owners]
        for signer in dropped:
            del self._records[signer]
            logger.info(f"Dropped signature of former owner {signer} for {self._tx.safe_tx_hash_hex}")

    def clear(self) -> None:
        self._records.clear()

    async def add_signature(
        self,
        signer: str,
        signature: bytes,
        method: Optional[SigningMethod] = None,
    ) -> SignatureRecord:
        """
        Verify and accept one owner signature.

        Raises:
            UnauthorizedSignerError: signer is not a current owner
            DuplicateSignatureError: signer already has an accepted signature
            InvalidSignatureError: signature does not verify for the signer
        """
        signer = checksum(signer, "signer")
        hash_hex = self._tx.safe_tx_hash_hex
        if signer not in self._owners:
            raise UnauthorizedSignerError(signer, wallet=self._tx.wallet)
        if signer in self._records:
            raise DuplicateSignatureError(signer, safe_tx_hash=hash_hex)

        signature = bytes(signature)
        detected = detect_method(signature)
        method = SigningMethod(method) if method is not None else detected

        if method == SigningMethod.APPROVED_HASH:
            normalized = await self._verify_approved_hash(signer, signature)
        else:
            normalized = self._verify_ecdsa(signer, signature, method)

        record = SignatureRecord(signer, normalized, method)
        self._records[signer] = record
        self._events.log_event(
            EventType.SIGNATURE_ADDED,
            f"Signature {len(self._records)}/{self._threshold} from {signer} for {hash_hex}",
            safe_tx_hash=hash_hex,
            signer=signer,
            method=method,
            collected=len(self._records),
            threshold=self._threshold,
        )
        return record

    def _verify_ecdsa(self, signer: str, signature: bytes, method: SigningMethod) -> bytes:
        v = signature[64]
        if v in (0, 1) and method == SigningMethod.EIP712:
            v += 27
        if method == SigningMethod.ETH_SIGN:
            if v in (27, 28):
                v += ETH_SIGN_V_OFFSET
            if v not in (31, 32):
                raise InvalidSignatureError(
                    f"eth_sign signature has invalid v={signature[64]}",
                    signer=signer, method=method.value,
                )
            message_hash = eth_sign_hash(self._tx.safe_tx_hash)
            recover_v = v - ETH_SIGN_V_OFFSET
        else:
            if v not in (27, 28):
                raise InvalidSignatureError(
                    f"EIP-712 signature has invalid v={signature[64]}",
                    signer=signer, method=method.value,
                )
            message_hash = self._tx.safe_tx_hash
            recover_v = v

        try:
            recovered = recover_signer(message_hash, signature[:64] + bytes([recover_v]))
        except (BadSignature, KeyValidationError, ValueError) as e:
            raise InvalidSignatureError(
                f"Signature could not be recovered: {e}",
                signer=signer, method=method.value,
            ) from e
        if recovered != signer:
            raise InvalidSignatureError(
                f"Signature recovers to {recovered}, not {signer}",
                signer=signer, method=method.value,
            )
        return signature[:64] + bytes([v])

    async def _verify_approved_hash(self, signer: str, signature: bytes) -> bytes:
        if signature != approved_hash_signature(signer):
            raise InvalidSignatureError(
                "Approved-hash signature must carry the owner in r, zero s and v=1",
                signer=signer, method=SigningMethod.APPROVED_HASH.value,
            )
        if self._approval_checker is None:
            raise InvalidSignatureError(
                "Approved-hash signatures need an on-chain approval check",
                signer=signer, method=SigningMethod.APPROVED_HASH.value,
            )
        if not await self._approval_checker(signer, self._tx.safe_tx_hash):
            raise InvalidSignatureError(
                f"{signer} has not approved {self._tx.safe_tx_hash_hex} on chain",
                signer=signer, method=SigningMethod.APPROVED_HASH.value,
            )
        return signature

    def is_executable(self) -> bool:
        """True once accepted owner signatures reach the threshold. Pure."""
        return sum(1 for s in self._records if s in self._owners) >= self._threshold

    def encoded_signatures(self) -> bytes:
        """
        Signatures packed for ``execTransaction`` in ascending signer order.

        Raises:
            ThresholdNotMetError: fewer accepted signatures than the threshold
        """
        if not self.is_executable():
            raise ThresholdNotMetError(len(self._records), self._threshold)
        return b"".join(r.signature for r in self.records)
