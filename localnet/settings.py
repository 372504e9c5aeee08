"""
Centralized bootstrap settings via pydantic-settings.

All configuration is loaded from LOCALNET_-prefixed environment variables
(or a .env file) with defaults that match the multinode demo layout. CLI
flags override by passing keyword arguments to Settings().
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Bootstrap configuration with env-var binding."""

    model_config = SettingsConfigDict(
        env_prefix="LOCALNET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -- Layout --
    config_dir: Path = Path("config")
    ledger_dir: Optional[Path] = None  # None -> <config_dir>/a/ledger
    state_file: Path = Path(".localnet/bootstrap_state.json")

    # -- External collaborators --
    keygen_bin: str = "solana-keygen"
    setup_script: str = "multinode-demo/setup.sh"
    ledger_tool_bin: str = "solana-ledger-tool"
    faucet_script: str = "multinode-demo/faucet.sh"

    # -- Invocation --
    snapshot_slot: int = Field(default=0, ge=0)
    suppress_debug_assertions: bool = True
    faucet_mode: Literal["foreground", "background"] = "foreground"
    faucet_startup_grace_seconds: float = Field(default=1.0, ge=0)
    command_timeout_seconds: Optional[float] = Field(default=None, gt=0)

    # -- Logging --
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json: bool = False

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value):
        return value.upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _state_file_outside_config_dir(self) -> "Settings":
        # Saving the run ledger creates its parent directory, which would
        # defeat the non-recursive config_dir creation guard.
        config_dir = self.config_dir.resolve()
        state_file = self.state_file.resolve()
        if config_dir == state_file or config_dir in state_file.parents:
            raise ValueError(
                f"state_file ({self.state_file}) must not be inside config_dir ({self.config_dir})"
            )
        return self

    @property
    def debug_env(self) -> Dict[str, str]:
        """Environment overrides for the setup and faucet children."""
        return {"NDEBUG": "1"} if self.suppress_debug_assertions else {}

    @property
    def faucet_in_background(self) -> bool:
        return self.faucet_mode == "background"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return a cached singleton Settings instance."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = Settings()
    return _settings
