"""Compiled contract artifacts for the infrastructure set.

Artifacts are loaded and validated at the edge and injected into the
deployer; nothing in the core reads files.

Expected JSON layout::

    {
      "singletonFactory": {"bytecode": "0x..."},
      "walletSingleton":  {"bytecode": "0x...", "salt": "0x..."},
      "proxyFactory":     {"bytecode": "0x..."},
      "fallbackHandler":  {"bytecode": "0x..."},
      "batchHelper":      {"bytecode": "0x..."}
    }
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from .config import CONTRACT_NAMES
from .create2 import ZERO_SALT, normalize_salt, to_bytes
from .exceptions import ArtifactsNotFoundError, ValidationError


class ContractArtifact(BaseModel):
    """Creation bytecode and optional CREATE2 salt for one contract."""

    model_config = ConfigDict(frozen=True)

    bytecode: bytes
    salt: bytes = Field(default=ZERO_SALT)

    @field_validator("bytecode", mode="before")
    @classmethod
    def _parse_bytecode(cls, v):
        try:
            raw = to_bytes(v) if isinstance(v, str) else v
        except ValidationError as e:
            raise ValueError(e.message) from e
        if not raw:
            raise ValueError("bytecode is empty")
        return raw

    @field_validator("salt", mode="before")
    @classmethod
    def _parse_salt(cls, v):
        try:
            return normalize_salt(v)
        except ValidationError as e:
            raise ValueError(e.message) from e


class ContractArtifacts(BaseModel):
    """The five infrastructure artifacts, keyed the way deployments are."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    singleton_factory: Optional[ContractArtifact] = Field(default=None, alias="singletonFactory")
    wallet_singleton: Optional[ContractArtifact] = Field(default=None, alias="walletSingleton")
    proxy_factory: Optional[ContractArtifact] = Field(default=None, alias="proxyFactory")
    fallback_handler: Optional[ContractArtifact] = Field(default=None, alias="fallbackHandler")
    batch_helper: Optional[ContractArtifact] = Field(default=None, alias="batchHelper")

    def missing(self) -> list[str]:
        return [name for name in CONTRACT_NAMES if getattr(self, name) is None]

    def require_complete(self) -> None:
        """Raise ArtifactsNotFoundError unless all five artifacts are present."""
        missing = self.missing()
        if missing:
            raise ArtifactsNotFoundError(
                f"Missing contract artifacts: {', '.join(missing)}",
                missing=missing,
            )

    def get(self, name: str) -> ContractArtifact:
        artifact = getattr(self, name, None)
        if artifact is None:
            raise ArtifactsNotFoundError(f"Missing contract artifact: {name}", missing=[name])
        return artifact


def load_artifacts(path: Union[str, Path]) -> ContractArtifacts:
    """Load and validate an artifacts JSON file."""
    path = Path(path)
    if not path.is_file():
        raise ArtifactsNotFoundError(
            f"Artifacts file not found: {path}",
            details={"path": str(path)},
        )
    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ArtifactsNotFoundError(
            f"Artifacts file is not valid JSON: {e}",
            details={"path": str(path)},
        ) from e
    try:
        artifacts = ContractArtifacts.model_validate(raw)
    except PydanticValidationError as e:
        raise ArtifactsNotFoundError(
            f"Artifacts file is malformed: {e.error_count()} error(s)",
            details={"path": str(path), "errors": [err["msg"] for err in e.errors()]},
        ) from e
    artifacts.require_complete()
    return artifacts
