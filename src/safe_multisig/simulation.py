"""
Transaction simulation and revert decoding.

Features:
- Pre-execution simulation via eth_call followed by eth_estimateGas
- Revert reason extraction for Error(string), Panic(uint256) and Safe's
  ``GSxxx`` codes
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from eth_abi import decode

from .config import SimulationConfig, get_config
from .exceptions import SimulationFailedError
from .rpc_client import RPCError

logger = logging.getLogger(__name__)

ERROR_SELECTOR = bytes.fromhex("08c379a0")  # Error(string)
PANIC_SELECTOR = bytes.fromhex("4e487b71")  # Panic(uint256)

SAFE_ERROR_CODES: Dict[str, str] = {
    "GS000": "Could not finish initialization",
    "GS001": "Threshold needs to be defined",
    "GS010": "Not enough gas to execute Safe transaction",
    "GS011": "Could not pay gas costs with ether",
    "GS012": "Could not pay gas costs with token",
    "GS013": "Safe transaction failed when gasPrice and safeTxGas were 0",
    "GS020": "Signatures data too short",
    "GS021": "Invalid contract signature location: inside static part",
    "GS022": "Invalid contract signature location: length not present",
    "GS023": "Invalid contract signature location: data not complete",
    "GS024": "Invalid contract signature provided",
    "GS025": "Hash has not been approved",
    "GS026": "Invalid owner provided",
    "GS030": "Only owners can approve a hash",
    "GS031": "Method can only be called from this contract",
    "GS100": "Modules have already been initialized",
    "GS101": "Invalid module address provided",
    "GS102": "Module has already been added",
    "GS103": "Invalid prevModule, module pair provided",
    "GS104": "Method can only be called from an enabled module",
    "GS200": "Owners have already been setup",
    "GS201": "Threshold cannot exceed owner count",
    "GS202": "Threshold needs to be greater than 0",
    "GS203": "Invalid owner address provided",
    "GS204": "Address is already an owner",
    "GS205": "Invalid prevOwner, owner pair provided",
    "GS300": "Guard does not implement IERC165",
    "GS400": "Fallback handler cannot be set to self",
}

PANIC_CODES: Dict[int, str] = {
    0x01: "assertion failed",
    0x11: "arithmetic overflow or underflow",
    0x12: "division or modulo by zero",
    0x21: "invalid enum value",
    0x31: "pop on empty array",
    0x32: "array index out of bounds",
    0x41: "out of memory",
    0x51: "call to zero-initialized function",
}

_GS_PATTERN = re.compile(r"\bGS\d{3}\b")
_HEX_PATTERN = re.compile(r"0x[0-9a-fA-F]{8,}")


def describe_safe_error(reason: str) -> str:
    """Expand a bare GSxxx code into ``GSxxx: description``."""
    match = _GS_PATTERN.search(reason)
    if match and match.group(0) in SAFE_ERROR_CODES:
        code = match.group(0)
        return f"{code}: {SAFE_ERROR_CODES[code]}"
    return reason


def decode_revert_data(data: bytes) -> Optional[str]:
    """Decode ABI-encoded revert data into a readable reason."""
    if not data:
        return None
    selector, payload = data[:4], data[4:]
    try:
        if selector == ERROR_SELECTOR:
            (message,) = decode(["string"], payload)
            return describe_safe_error(message)
        if selector == PANIC_SELECTOR:
            (code,) = decode(["uint256"], payload)
            return f"Panic(0x{code:02x}): {PANIC_CODES.get(code, 'unknown panic')}"
    except Exception as e:  # malformed payloads from non-conforming contracts
        logger.debug(f"Could not decode revert payload: {e}")
    return f"custom error 0x{selector.hex()}"


def _revert_bytes(value: Any) -> Optional[bytes]:
    if isinstance(value, dict):
        value = value.get("data") or value.get("originalError", {}).get("data")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        match = _HEX_PATTERN.search(value)
        if match:
            return bytes.fromhex(match.group(0)[2:])
    return None


def extract_revert_reason(error: Exception) -> Optional[str]:
    """Best-effort revert reason from an RPC error (data payload, then message)."""
    if isinstance(error, RPCError):
        raw = _revert_bytes(error.data)
        if raw:
            return decode_revert_data(raw)
    message = str(error)
    lowered = message.lower()
    if "execution reverted:" in lowered:
        idx = lowered.find("execution reverted:")
        return describe_safe_error(message[idx + len("execution reverted:"):].strip())
    raw = _revert_bytes(message)
    if raw and raw[:4] in (ERROR_SELECTOR, PANIC_SELECTOR):
        return decode_revert_data(raw)
    if _GS_PATTERN.search(message):
        return describe_safe_error(message)
    if "revert" in lowered:
        return "execution reverted"
    return None


class SimulationResult(str, Enum):
    """Result of transaction simulation."""
    SUCCESS = "success"
    REVERTED = "reverted"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True)
class SimulationOutput:
    """Output from transaction simulation."""
    result: SimulationResult
    return_data: bytes = b""
    gas_estimate: Optional[int] = None
    revert_reason: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def will_succeed(self) -> bool:
        return self.result == SimulationResult.SUCCESS


class TransactionSimulator:
    """
    Dry-runs transactions before anything is signed or submitted.

    SECURITY: Simulation prevents collecting signatures for, or paying gas
    on, a call that is known to revert.
    """

    def __init__(self, config: Optional[SimulationConfig] = None):
        self._config = config or get_config().simulation

    async def simulate(
        self,
        rpc_client: Any,  # RPCClient
        tx_params: Dict[str, Any],
        block: str = "latest",
        force: bool = False,
    ) -> SimulationOutput:
        """eth_call, then eth_estimateGas on the same parameters.

        ``force`` runs the dry-run even when simulation is disabled in config.
        """
        if not self._config.enabled and not force:
            logger.debug("Simulation disabled, skipping")
            return SimulationOutput(result=SimulationResult.SUCCESS)

        try:
            async with asyncio.timeout(self._config.timeout_seconds):
                return_data = await rpc_client.eth_call(tx_params, block)
                gas = await rpc_client.estimate_gas(tx_params)
        except TimeoutError:
            logger.warning(f"Simulation timed out after {self._config.timeout_seconds}s")
            return SimulationOutput(
                result=SimulationResult.TIMEOUT,
                error_message="Simulation timed out",
            )
        except RPCError as e:
            reason = extract_revert_reason(e)
            return SimulationOutput(
                result=SimulationResult.REVERTED if e.is_revert or reason else SimulationResult.ERROR,
                revert_reason=reason,
                error_message=e.message,
            )

        return SimulationOutput(
            result=SimulationResult.SUCCESS,
            return_data=return_data,
            gas_estimate=gas,
        )

    async def simulate_and_validate(
        self,
        rpc_client: Any,
        tx_params: Dict[str, Any],
        block: str = "latest",
        force: bool = False,
    ) -> SimulationOutput:
        """
        Simulate and raise if the transaction would fail.

        With ``force`` the dry-run always happens and a failure always raises.

        Raises:
            SimulationFailedError: the dry-run reverted, errored or timed out
        """
        output = await self.simulate(rpc_client, tx_params, block, force=force)
        if not output.will_succeed and (force or self._config.block_on_simulation_failure):
            raise SimulationFailedError(
                f"Transaction simulation failed: {output.result.value} - "
                f"{output.revert_reason or output.error_message}",
                revert_reason=output.revert_reason,
                details={"to": tx_params.get("to"), "from": tx_params.get("from")},
            )
        return output
