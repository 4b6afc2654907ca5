"""Unified exception hierarchy for safe-multisig.

Every failure a caller can see carries a machine-readable ``error_code``
drawn from the closed :class:`ErrorCode` set, a human-readable message and
an optional ``details`` dictionary. The error code is the discriminant:
callers that prefer value-style handling can match on ``exc.error_code``
exhaustively, and the tool boundary turns exceptions into tagged
``ToolFailure`` values.

Usage:
    from safe_multisig.exceptions import SafeMultisigError, ErrorCode

    try:
        await deployer.deploy(...)
    except SafeMultisigError as e:
        if e.error_code is ErrorCode.INSUFFICIENT_BALANCE:
            ...
"""
from __future__ import annotations

import hashlib
import re
from enum import Enum
from typing import Any, Optional

_PRIVATE_KEY_RE = re.compile(r"(0x)?[0-9a-fA-F]{64}")
_SECRET_FIELDS = {"private_key", "privatekey", "deployer_private_key", "key", "secret"}
# 32-byte hex under these key suffixes is public data.
_PUBLIC_HEX_SUFFIXES = ("hash", "salt", "data", "signature")


class ErrorCode(str, Enum):
    """Machine-readable error codes."""
    NETWORK_NOT_SUPPORTED = "NETWORK_NOT_SUPPORTED"
    NETWORK_ERROR = "NETWORK_ERROR"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    ARTIFACTS_NOT_FOUND = "ARTIFACTS_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED_SIGNER = "UNAUTHORIZED_SIGNER"
    DUPLICATE_SIGNATURE = "DUPLICATE_SIGNATURE"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    SIMULATION_FAILED = "SIMULATION_FAILED"
    ALREADY_EXECUTED = "ALREADY_EXECUTED"
    CONFIRMATION_TIMEOUT = "CONFIRMATION_TIMEOUT"
    THRESHOLD_NOT_MET = "THRESHOLD_NOT_MET"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Digests of keys seen by signers, oldest dropped first.
_MAX_REGISTERED_SECRETS = 256
_registered_digests: dict[bytes, None] = {}
_HEX_RUN_RE = re.compile(r"(?<![0-9a-fA-F])(0x)?([0-9a-fA-F]{64})(?![0-9a-fA-F])")


def _digest(hex_key: str) -> bytes:
    return hashlib.sha256(hex_key.lower().encode()).digest()


def register_secret(secret: str) -> None:
    """Remember a key (by digest only) so it is masked wherever it shows up in text."""
    normalized = secret.lower().removeprefix("0x")
    if not normalized:
        return
    _registered_digests.pop(_digest(normalized), None)
    _registered_digests[_digest(normalized)] = None
    while len(_registered_digests) > _MAX_REGISTERED_SECRETS:
        del _registered_digests[next(iter(_registered_digests))]


def _scrub_text(text: str) -> str:
    if not _registered_digests:
        return text

    def mask(match: re.Match) -> str:
        if _digest(match.group(2)) in _registered_digests:
            return "<redacted>"
        return match.group(0)

    return _HEX_RUN_RE.sub(mask, text)


def redact_secrets(value: Any, _key: Optional[str] = None) -> Any:
    """Strip private keys from a value before it is logged or returned.

    Fields with secret names are masked outright. A standalone 32-byte hex
    string is masked too, except under hash, salt, data and signature keys.
    Free text is scrubbed of registered keys.
    """
    if isinstance(value, dict):
        cleaned = {}
        for k, v in value.items():
            if str(k).lower() in _SECRET_FIELDS:
                cleaned[k] = "<redacted>"
            else:
                cleaned[k] = redact_secrets(v, str(k))
        return cleaned
    if isinstance(value, (list, tuple)):
        return type(value)(redact_secrets(v, _key) for v in value)
    if isinstance(value, str):
        is_public = _key is not None and _key.lower().endswith(_PUBLIC_HEX_SUFFIXES)
        if not is_public and _PRIVATE_KEY_RE.fullmatch(value):
            return "<redacted>"
        return _scrub_text(value)
    return value


class SafeMultisigError(Exception):
    """Base exception for all safe-multisig errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context (secrets are redacted)
    """

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = redact_secrets(message)
        super().__init__(message)
        self.message = message
        self.details = redact_secrets(details or {})

    @property
    def code(self) -> str:
        return self.error_code.value

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to the tool error envelope."""
        error: dict[str, Any] = {
            "code": self.error_code.value,
            "message": self.message,
        }
        if self.details:
            error["details"] = self.details
        return {"error": error}


# =============================================================================
# Input & configuration
# =============================================================================

class ValidationError(SafeMultisigError):
    """Malformed input."""

    error_code = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class NetworkNotSupportedError(SafeMultisigError):
    """No configuration (RPC endpoint) exists for the requested chain."""

    error_code = ErrorCode.NETWORK_NOT_SUPPORTED

    def __init__(self, chain_id: str, details: Optional[dict[str, Any]] = None) -> None:
        details = details or {}
        details["chain_id"] = chain_id
        super().__init__(f"Network {chain_id} is not supported", details=details)


class ArtifactsNotFoundError(SafeMultisigError):
    """Compiled contract artifacts are missing or incomplete."""

    error_code = ErrorCode.ARTIFACTS_NOT_FOUND

    def __init__(
        self,
        message: str,
        missing: Optional[list[str]] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if missing:
            details["missing"] = missing
        super().__init__(message, details=details)


# =============================================================================
# Chain interaction
# =============================================================================

class NetworkError(SafeMultisigError):
    """RPC connectivity or node failure."""

    error_code = ErrorCode.NETWORK_ERROR

    def __init__(
        self,
        message: str,
        chain_id: Optional[str] = None,
        method: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if chain_id:
            details["chain_id"] = chain_id
        if method:
            details["method"] = method
        super().__init__(message, details=details)


class InsufficientBalanceError(SafeMultisigError):
    """Account balance cannot cover the estimated gas."""

    error_code = ErrorCode.INSUFFICIENT_BALANCE

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        available: Optional[int] = None,
        required: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if address:
            details["address"] = address
        if available is not None:
            details["available_wei"] = str(available)
        if required is not None:
            details["required_wei"] = str(required)
        super().__init__(message, details=details)


class ConfirmationTimeoutError(SafeMultisigError):
    """Transaction did not reach the requested confirmation depth in time."""

    error_code = ErrorCode.CONFIRMATION_TIMEOUT

    def __init__(
        self,
        tx_hash: str,
        timeout_seconds: float,
        confirmations: int = 0,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["tx_hash"] = tx_hash
        details["timeout_seconds"] = timeout_seconds
        details["confirmations"] = confirmations
        super().__init__(
            f"Transaction {tx_hash} not confirmed after {timeout_seconds}s",
            details=details,
        )


class SimulationFailedError(SafeMultisigError):
    """Dry-run of a transaction reverted or errored."""

    error_code = ErrorCode.SIMULATION_FAILED

    def __init__(
        self,
        message: str,
        revert_reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if revert_reason:
            details["revert_reason"] = revert_reason
        self.revert_reason = revert_reason
        super().__init__(message, details=details)


# =============================================================================
# Signatures & execution
# =============================================================================

class UnauthorizedSignerError(SafeMultisigError):
    """Signer is not a current owner of the wallet."""

    error_code = ErrorCode.UNAUTHORIZED_SIGNER

    def __init__(self, signer: str, wallet: Optional[str] = None) -> None:
        details: dict[str, Any] = {"signer": signer}
        if wallet:
            details["wallet"] = wallet
        super().__init__(f"Signer {signer} is not an owner of this wallet", details=details)


class DuplicateSignatureError(SafeMultisigError):
    """Signer already has an accepted signature on this transaction."""

    error_code = ErrorCode.DUPLICATE_SIGNATURE

    def __init__(self, signer: str, safe_tx_hash: Optional[str] = None) -> None:
        details: dict[str, Any] = {"signer": signer}
        if safe_tx_hash:
            details["safe_tx_hash"] = safe_tx_hash
        super().__init__(f"Signer {signer} has already signed this transaction", details=details)


class InvalidSignatureError(SafeMultisigError):
    """Signature does not verify against the transaction hash."""

    error_code = ErrorCode.INVALID_SIGNATURE

    def __init__(
        self,
        message: str,
        signer: Optional[str] = None,
        method: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if signer:
            details["signer"] = signer
        if method:
            details["method"] = method
        super().__init__(message, details=details)


class ThresholdNotMetError(SafeMultisigError):
    """Not enough valid signatures to execute."""

    error_code = ErrorCode.THRESHOLD_NOT_MET

    def __init__(self, collected: int, threshold: int) -> None:
        super().__init__(
            f"Insufficient signatures: {collected} of {threshold} required",
            details={"collected": collected, "threshold": threshold},
        )


class AlreadyExecutedError(SafeMultisigError):
    """Pending transaction has already been executed."""

    error_code = ErrorCode.ALREADY_EXECUTED

    def __init__(self, safe_tx_hash: str, tx_hash: Optional[str] = None) -> None:
        details: dict[str, Any] = {"safe_tx_hash": safe_tx_hash}
        if tx_hash:
            details["tx_hash"] = tx_hash
        super().__init__(f"Transaction {safe_tx_hash} was already executed", details=details)


class TransactionNotFoundError(SafeMultisigError):
    """No pending transaction is known under the given hash."""

    error_code = ErrorCode.TRANSACTION_NOT_FOUND

    def __init__(self, safe_tx_hash: str) -> None:
        super().__init__(
            f"Transaction {safe_tx_hash} not found",
            details={"safe_tx_hash": safe_tx_hash},
        )


_EXCEPTION_MAP: dict[ErrorCode, type[SafeMultisigError]] = {
    ErrorCode.NETWORK_NOT_SUPPORTED: NetworkNotSupportedError,
    ErrorCode.NETWORK_ERROR: NetworkError,
    ErrorCode.INSUFFICIENT_BALANCE: InsufficientBalanceError,
    ErrorCode.ARTIFACTS_NOT_FOUND: ArtifactsNotFoundError,
    ErrorCode.VALIDATION_ERROR: ValidationError,
    ErrorCode.UNAUTHORIZED_SIGNER: UnauthorizedSignerError,
    ErrorCode.DUPLICATE_SIGNATURE: DuplicateSignatureError,
    ErrorCode.INVALID_SIGNATURE: InvalidSignatureError,
    ErrorCode.SIMULATION_FAILED: SimulationFailedError,
    ErrorCode.ALREADY_EXECUTED: AlreadyExecutedError,
    ErrorCode.CONFIRMATION_TIMEOUT: ConfirmationTimeoutError,
    ErrorCode.THRESHOLD_NOT_MET: ThresholdNotMetError,
    ErrorCode.TRANSACTION_NOT_FOUND: TransactionNotFoundError,
    ErrorCode.INTERNAL_ERROR: SafeMultisigError,
}


def get_exception_class(error_code: ErrorCode | str) -> type[SafeMultisigError]:
    """Get exception class for an error code."""
    return _EXCEPTION_MAP.get(ErrorCode(error_code), SafeMultisigError)
