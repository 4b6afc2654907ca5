"""Deterministic contract addressing (CREATE and CREATE2)."""

from __future__ import annotations

from typing import Union

import rlp
from web3 import Web3

from .exceptions import ValidationError

ZERO_SALT = b"\x00" * 32

BytesLike = Union[bytes, str]


def to_bytes(value: BytesLike) -> bytes:
    """Accept raw bytes or a 0x-prefixed hex string."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = value[2:] if value.startswith(("0x", "0X")) else value
    try:
        return bytes.fromhex(text)
    except ValueError as e:
        raise ValidationError(f"Invalid hex string: {e}") from e


def normalize_salt(salt: BytesLike | int | None) -> bytes:
    """Turn an int, hex string or bytes salt into a 32-byte word."""
    if salt is None:
        return ZERO_SALT
    if isinstance(salt, int):
        return salt.to_bytes(32, "big")
    raw = to_bytes(salt)
    if len(raw) > 32:
        raise ValidationError("Salt must be at most 32 bytes", field="salt")
    return raw.rjust(32, b"\x00")


def compute_create2_address(deployer: str, salt: BytesLike | int | None, init_code: BytesLike) -> str:
    """
    Address of a contract created via CREATE2 (EIP-1014).

    address = keccak256(0xff ++ deployer ++ salt ++ keccak256(init_code))[12:]

    Returns:
        Checksummed address
    """
    digest = Web3.keccak(
        b"\xff"
        + to_bytes(deployer)
        + normalize_salt(salt)
        + Web3.keccak(to_bytes(init_code))
    )
    return Web3.to_checksum_address(digest[12:])


def compute_create_address(sender: str, nonce: int) -> str:
    """Address of a contract created by a plain CREATE from ``sender`` at ``nonce``."""
    digest = Web3.keccak(rlp.encode([to_bytes(sender), nonce]))
    return Web3.to_checksum_address(digest[12:])
