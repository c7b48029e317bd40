"""
Sync configuration loader.

Loads engine settings from YAML files. The expected format:

    endpoint: http://localhost:8545
    contract_address: 0x5FbDB2315678afecb367f032d93F642f64180aa3
    poll_interval_ms: 1000
    cache_path: ledger-cache.sqlite
    api:
      port: 5053

Every key is optional. The endpoint and contract address can also come from
the environment (`LEDGER_SYNC_RPC_URL`, `LEDGER_SYNC_CONTRACT_ADDRESS`),
which takes precedence over the file.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

import yaml
from pydantic import Field, ValidationError, field_validator

from ledger_sync.api import ApiServerConfig
from ledger_sync.client.jsonrpc import DEFAULT_CONFIRMATION_TIMEOUT, DEFAULT_REQUEST_TIMEOUT
from ledger_sync.sync.config import (
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_SCALAR_NAMES,
    FAILURE_THRESHOLD,
    MAX_RECORDS_PER_KIND,
    MIN_POLL_INTERVAL_MS,
    RECENT_ACTIVITY_LIMIT,
    REFRESH_EVERY_POLLS,
)
from ledger_sync.types import ConfigError, FrozenModel, normalize_address

ENV_RPC_URL: Final = "LEDGER_SYNC_RPC_URL"
"""Environment variable overriding the endpoint."""

ENV_CONTRACT_ADDRESS: Final = "LEDGER_SYNC_CONTRACT_ADDRESS"
"""Environment variable overriding the contract address."""


class SyncConfig(FrozenModel):
    """
    Settings for one sync engine and its surroundings.

    An empty endpoint or contract address is allowed: the engine then stays
    unconfigured until both are supplied.
    """

    endpoint: str = ""
    """URL of the ledger's JSON-RPC endpoint."""

    contract_address: str = ""
    """Address of the staking contract (normalized to lowercase)."""

    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    """Delay between polls; values below the floor are raised to it."""

    max_records_per_kind: int = Field(default=MAX_RECORDS_PER_KIND, ge=1)
    """Per-kind event cache bound."""

    failure_threshold: int = Field(default=FAILURE_THRESHOLD, ge=1)
    """Consecutive height failures before the degraded snapshot."""

    refresh_every_polls: int = Field(default=REFRESH_EVERY_POLLS, ge=1)
    """Polls without height change after which a full fetch happens anyway."""

    recent_activity_limit: int = Field(default=RECENT_ACTIVITY_LIMIT, ge=0)
    """Maximum items in the activity feed."""

    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    """Per-request HTTP timeout in seconds."""

    confirmation_timeout: float = Field(default=DEFAULT_CONFIRMATION_TIMEOUT, gt=0)
    """Seconds to wait for a write to be mined."""

    scalar_names: tuple[str, ...] = DEFAULT_SCALAR_NAMES
    """Aggregate contract reads included in every snapshot."""

    cache_path: Path | None = None
    """SQLite file for the warm-start cache mirror; None disables it."""

    api: ApiServerConfig = Field(default_factory=lambda: ApiServerConfig(enabled=False))
    """Diagnostics API settings (disabled unless configured)."""

    @field_validator("poll_interval_ms")
    @classmethod
    def clamp_poll_interval(cls, v: int) -> int:
        """Raise intervals below the floor to the floor."""
        return max(v, MIN_POLL_INTERVAL_MS)

    @field_validator("contract_address")
    @classmethod
    def normalize_contract(cls, v: str) -> str:
        """Lowercase a non-empty address; reject malformed ones."""
        v = v.strip()
        return normalize_address(v) if v else ""

    @classmethod
    def from_yaml_file(
        cls,
        path: Path | str,
        environ: Mapping[str, str] | None = None,
    ) -> SyncConfig:
        """
        Load configuration from a YAML file.

        Raises:
            ConfigError: If the file is missing, not valid YAML, or fails validation.
        """
        path = Path(path)
        try:
            with path.open(encoding="utf-8") as f:
                content = f.read()
        except OSError as exc:
            raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
        return cls.from_yaml(content, environ)

    @classmethod
    def from_yaml(cls, content: str, environ: Mapping[str, str] | None = None) -> SyncConfig:
        """
        Load configuration from a YAML string.

        Useful for testing or programmatic config generation.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML: {exc}") from exc

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config must be a mapping, got {type(data).__name__}")
        return cls.from_mapping(data, environ)

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        environ: Mapping[str, str] | None = None,
    ) -> SyncConfig:
        """
        Validate a settings mapping, applying environment overrides first.

        Args:
            data: Raw settings.
            environ: Environment to read overrides from; defaults to `os.environ`.
        """
        environ = os.environ if environ is None else environ
        merged = dict(data)
        if environ.get(ENV_RPC_URL):
            merged["endpoint"] = environ[ENV_RPC_URL]
        if environ.get(ENV_CONTRACT_ADDRESS):
            merged["contract_address"] = environ[ENV_CONTRACT_ADDRESS]

        # YAML parses an unquoted 0x... address as an integer.
        address = merged.get("contract_address")
        if isinstance(address, int) and not isinstance(address, bool):
            merged["contract_address"] = f"0x{address:040x}"

        try:
            return cls.model_validate(merged)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc
