"""
Bootstrap pipeline for the local two-validator demo cluster.

Provides single-command setup: config directory, keypairs, cluster setup,
genesis snapshot and faucet.
"""

from .checkpoint import (
    BootstrapState,
    CheckpointManager,
    ConsoleReporter,
    ProgressReporter,
    StageState,
    StageStatus,
)
from .layout import (
    ConfigDirResult,
    ConfigDirStatus,
    KeypairKind,
    ValidatorRole,
    build_roles,
    ensure_config_dir,
)
from .orchestrator import (
    Stage,
    StageOrchestrator,
    build_orchestrator,
    run,
)

__all__ = [
    "BootstrapState",
    "CheckpointManager",
    "ConsoleReporter",
    "ProgressReporter",
    "StageState",
    "StageStatus",
    "ConfigDirResult",
    "ConfigDirStatus",
    "KeypairKind",
    "ValidatorRole",
    "build_roles",
    "ensure_config_dir",
    "Stage",
    "StageOrchestrator",
    "build_orchestrator",
    "run",
]
