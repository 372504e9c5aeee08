"""Tests for Settings env binding and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

import localnet.settings
from localnet.settings import Settings, get_settings


class TestSettings:
    """Defaults, env vars and cross-field validation."""

    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.config_dir == Path("config")
        assert settings.keygen_bin == "solana-keygen"
        assert settings.setup_script == "multinode-demo/setup.sh"
        assert settings.ledger_tool_bin == "solana-ledger-tool"
        assert settings.faucet_script == "multinode-demo/faucet.sh"
        assert settings.snapshot_slot == 0
        assert settings.faucet_mode == "foreground"
        assert settings.command_timeout_seconds is None

    def test_env_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("LOCALNET_CONFIG_DIR", "/tmp/demo-config")
        monkeypatch.setenv("LOCALNET_FAUCET_MODE", "background")
        monkeypatch.setenv("LOCALNET_SUPPRESS_DEBUG_ASSERTIONS", "false")

        settings = Settings()
        assert settings.config_dir == Path("/tmp/demo-config")
        assert settings.faucet_in_background
        assert settings.debug_env == {}

    def test_dotenv_file(self, tmp_path: Path) -> None:
        """A .env file in the working directory is read."""
        (tmp_path / ".env").write_text("LOCALNET_KEYGEN_BIN=/opt/solana/bin/solana-keygen\n")
        assert Settings().keygen_bin == "/opt/solana/bin/solana-keygen"

    def test_kwargs_override_env(self, monkeypatch) -> None:
        monkeypatch.setenv("LOCALNET_SNAPSHOT_SLOT", "5")
        assert Settings(snapshot_slot=9).snapshot_slot == 9

    def test_log_level_case_insensitive(self) -> None:
        assert Settings(log_level="warning").log_level == "WARNING"

    def test_debug_env_default(self) -> None:
        assert Settings().debug_env == {"NDEBUG": "1"}

    def test_state_file_inside_config_dir_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="must not be inside config_dir"):
            Settings(config_dir=tmp_path / "cfg", state_file=tmp_path / "cfg" / "state.json")

    def test_state_file_equal_to_config_dir_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            Settings(config_dir=tmp_path / "cfg", state_file=tmp_path / "cfg")

    @pytest.mark.parametrize(
        "field, value",
        [
            ("snapshot_slot", -1),
            ("faucet_mode", "daemon"),
            ("command_timeout_seconds", 0),
            ("faucet_startup_grace_seconds", -0.5),
            ("log_level", "verbose"),
        ],
    )
    def test_invalid_values(self, field, value) -> None:
        with pytest.raises(ValidationError):
            Settings(**{field: value})


class TestGetSettings:
    """Singleton accessor."""

    def test_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_reset(self) -> None:
        first = get_settings()
        localnet.settings._settings = None
        assert get_settings() is not first
