"""
Structured logging for chain operations.

Features:
- Injectable ``EventLogger`` protocol so components never hard-wire output
- ``ChainLogger`` default backed by stdlib logging (``extra={"event": ...}``)
- Transaction lifecycle and deployment events
- Secret masking: anything shaped like a private key is redacted
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .config import LoggingConfig, get_config
from .exceptions import redact_secrets

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of events emitted by the orchestration layer."""
    DEPLOYMENT_STARTED = "deployment_started"
    CONTRACT_SKIPPED = "contract_skipped"
    CONTRACT_DEPLOYED = "contract_deployed"
    DEPLOYMENT_COMPLETED = "deployment_completed"
    DEPLOYMENT_FAILED = "deployment_failed"
    TRANSACTION_PROPOSED = "transaction_proposed"
    SIGNATURE_ADDED = "signature_added"
    TRANSACTION_SUBMITTED = "transaction_submitted"
    TRANSACTION_CONFIRMED = "transaction_confirmed"
    TRANSACTION_FAILED = "transaction_failed"
    TRANSACTION_SUPERSEDED = "transaction_superseded"
    SIMULATION = "simulation"


@runtime_checkable
class EventLogger(Protocol):
    """Sink for structured events."""

    def log_event(
        self,
        event: EventType,
        message: str,
        level: int = logging.INFO,
        **fields: Any,
    ) -> None:
        ...


def _convert(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, bytes):
        return "0x" + obj.hex()
    return obj


class ChainLogger:
    """
    Default EventLogger writing to stdlib logging.

    Every record carries ``extra={"event": {...}}`` with the event type,
    a UTC timestamp and the redacted fields, so a JSON formatter or a log
    shipper can index them without parsing the message.
    """

    def __init__(
        self,
        name: str = "safe_multisig",
        config: Optional[LoggingConfig] = None,
    ):
        self._logger = logging.getLogger(name)
        self._config = config or get_config().logging

    def log_event(
        self,
        event: EventType,
        message: str,
        level: int = logging.INFO,
        **fields: Any,
    ) -> None:
        data = redact_secrets({k: _convert(v) for k, v in fields.items()})
        if self._config.mask_addresses:
            data = {
                k: self._mask_address(v) if k in ("from_address", "signer", "owner") else v
                for k, v in data.items()
            }
        payload = {
            "type": event.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **data,
        }
        self._logger.log(level, redact_secrets(message), extra={"event": payload})

    @staticmethod
    def _mask_address(address: Any) -> Any:
        if isinstance(address, str) and len(address) > 10:
            return f"{address[:6]}...{address[-4:]}"
        return address


class JsonFormatter(logging.Formatter):
    """Render records and their structured event as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event:
            entry["event"] = event
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


# Global chain logger
_chain_logger: Optional[ChainLogger] = None


def get_chain_logger(
    name: str = "safe_multisig",
    config: Optional[LoggingConfig] = None,
) -> ChainLogger:
    """Get the global chain logger instance."""
    global _chain_logger
    if _chain_logger is None:
        _chain_logger = ChainLogger(name, config)
    return _chain_logger


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Set up logging configuration.

    Args:
        level: Log level
        format_string: Custom format string (ignored with json_format)
        json_format: Emit one JSON object per line
    """
    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            format_string or "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level.upper()))

    logging.getLogger("safe_multisig").setLevel(getattr(logging, level.upper()))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class RecordingEventLogger:
    """EventLogger that keeps events in memory; handy for tests and audits."""

    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def log_event(
        self,
        event: EventType,
        message: str,
        level: int = logging.INFO,
        **fields: Any,
    ) -> None:
        self.events.append({
            "type": event,
            "message": redact_secrets(message),
            "level": level,
            **redact_secrets(fields),
        })

    def of_type(self, event: EventType) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["type"] == event]
