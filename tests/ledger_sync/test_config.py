"""Tests for loading sync configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from ledger_sync.api import ApiServerConfig
from ledger_sync.config import ENV_CONTRACT_ADDRESS, ENV_RPC_URL, SyncConfig
from ledger_sync.sync import DEFAULT_POLL_INTERVAL_MS, DEFAULT_SCALAR_NAMES, MIN_POLL_INTERVAL_MS
from ledger_sync.types import ConfigError
from tests.ledger_sync.helpers import CONTRACT, ENDPOINT

SAMPLE_YAML = """
endpoint: http://localhost:8545
contract_address: "0x5FbDB2315678afecb367f032d93F642f64180aa3"
poll_interval_ms: 2000
cache_path: ledger-cache.sqlite
api:
  port: 6000
"""


class TestDefaults:
    """Tests for the default settings."""

    def test_empty_config_is_unconfigured(self) -> None:
        """Every key is optional; the engine then stays idle."""
        config = SyncConfig.from_yaml("", environ={})

        assert config.endpoint == ""
        assert config.contract_address == ""
        assert config.poll_interval_ms == DEFAULT_POLL_INTERVAL_MS
        assert config.scalar_names == DEFAULT_SCALAR_NAMES
        assert config.cache_path is None
        assert config.api.enabled is False


class TestFromYaml:
    """Tests for parsing YAML content."""

    def test_parses_all_keys(self) -> None:
        """Keys map onto fields, nested api settings included."""
        config = SyncConfig.from_yaml(SAMPLE_YAML, environ={})

        assert config.endpoint == "http://localhost:8545"
        assert config.contract_address == "0x5fbdb2315678afecb367f032d93f642f64180aa3"
        assert config.poll_interval_ms == 2000
        assert config.cache_path == Path("ledger-cache.sqlite")
        assert config.api == ApiServerConfig(port=6000)

    def test_unquoted_address(self) -> None:
        """YAML reads a bare hex address as an integer; it is restored."""
        config = SyncConfig.from_yaml(f"contract_address: {CONTRACT}", environ={})

        assert config.contract_address == CONTRACT

    def test_poll_interval_is_clamped(self) -> None:
        """Intervals below the floor are raised to it."""
        config = SyncConfig.from_yaml("poll_interval_ms: 10", environ={})

        assert config.poll_interval_ms == MIN_POLL_INTERVAL_MS

    @pytest.mark.parametrize(
        ("content", "message"),
        [
            ("endpoint: [unclosed", "Invalid YAML"),
            ("- just\n- a list", "must be a mapping"),
            ("contract_address: nope", "Invalid configuration"),
            ("max_records_per_kind: 0", "Invalid configuration"),
            ("unknown_key: 1", "Invalid configuration"),
        ],
    )
    def test_invalid_content(self, content: str, message: str) -> None:
        """Every failure surfaces as a configuration error."""
        with pytest.raises(ConfigError, match=message):
            SyncConfig.from_yaml(content, environ={})


class TestFromYamlFile:
    """Tests for reading config files."""

    def test_reads_file(self, tmp_path: Path) -> None:
        """A file on disk is parsed like a string."""
        path = tmp_path / "ledger-sync.yaml"
        path.write_text(SAMPLE_YAML, encoding="utf-8")

        assert SyncConfig.from_yaml_file(path, environ={}).poll_interval_ms == 2000

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file is a configuration error."""
        with pytest.raises(ConfigError, match="Cannot read config file"):
            SyncConfig.from_yaml_file(tmp_path / "absent.yaml", environ={})


class TestEnvironment:
    """Tests for environment overrides."""

    def test_environment_wins_over_file(self) -> None:
        """Environment variables replace file values."""
        environ = {ENV_RPC_URL: ENDPOINT, ENV_CONTRACT_ADDRESS: "0x" + CONTRACT[2:].upper()}

        config = SyncConfig.from_yaml(SAMPLE_YAML, environ=environ)

        assert config.endpoint == ENDPOINT
        assert config.contract_address == CONTRACT

    def test_empty_variables_are_ignored(self) -> None:
        """Blank variables do not clear file values."""
        config = SyncConfig.from_yaml(SAMPLE_YAML, environ={ENV_RPC_URL: ""})

        assert config.endpoint == "http://localhost:8545"

    def test_reads_process_environment_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without an explicit mapping, the process environment is used."""
        monkeypatch.setenv(ENV_RPC_URL, ENDPOINT)

        assert SyncConfig.from_mapping({}).endpoint == ENDPOINT
