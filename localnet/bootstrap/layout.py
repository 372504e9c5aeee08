"""
On-disk layout of the bootstrap configuration directory.

    <config_dir>/
        a/identity.json  a/stake-account.json  a/vote-account.json
        b/identity.json  b/stake-account.json  b/vote-account.json

Also provides the non-recursive creation guard that decides whether key
generation runs.
"""

from __future__ import annotations

import errno
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

ROLE_NAMES: Tuple[str, ...] = ("a", "b")


class KeypairKind(Enum):
    """Credential artifacts generated per validator role."""
    IDENTITY = "identity"
    STAKE_ACCOUNT = "stake-account"
    VOTE_ACCOUNT = "vote-account"

    @property
    def filename(self) -> str:
        return f"{self.value}.json"


# Order in which the key generator is invoked for a role.
GENERATION_ORDER: Tuple[KeypairKind, ...] = (
    KeypairKind.IDENTITY,
    KeypairKind.STAKE_ACCOUNT,
    KeypairKind.VOTE_ACCOUNT,
)

# Positional order expected by the cluster setup script's --bootstrap-validator.
SETUP_ARG_ORDER: Tuple[KeypairKind, ...] = (
    KeypairKind.IDENTITY,
    KeypairKind.VOTE_ACCOUNT,
    KeypairKind.STAKE_ACCOUNT,
)


@dataclass(frozen=True)
class ValidatorRole:
    """One bootstrap validator: its identity, vote and stake keypair paths."""
    name: str
    directory: Path

    def keypair_path(self, kind: KeypairKind) -> Path:
        return self.directory / kind.filename

    @property
    def identity(self) -> Path:
        return self.keypair_path(KeypairKind.IDENTITY)

    @property
    def stake_account(self) -> Path:
        return self.keypair_path(KeypairKind.STAKE_ACCOUNT)

    @property
    def vote_account(self) -> Path:
        return self.keypair_path(KeypairKind.VOTE_ACCOUNT)

    @property
    def ledger_dir(self) -> Path:
        return self.directory / "ledger"

    def generation_paths(self) -> List[Tuple[KeypairKind, Path]]:
        """Keypair paths in key generator invocation order."""
        return [(kind, self.keypair_path(kind)) for kind in GENERATION_ORDER]

    def bootstrap_args(self) -> List[str]:
        """One ``--bootstrap-validator <identity> <vote> <stake>`` group."""
        return ["--bootstrap-validator"] + [
            str(self.keypair_path(kind)) for kind in SETUP_ARG_ORDER
        ]

    def missing_keypairs(self) -> List[Path]:
        return [path for _, path in self.generation_paths() if not path.is_file()]


def build_roles(config_dir: Path, names: Sequence[str] = ROLE_NAMES) -> List[ValidatorRole]:
    """Create the validator roles rooted at config_dir, in fixed order."""
    config_dir = Path(config_dir)
    return [ValidatorRole(name=name, directory=config_dir / name) for name in names]


# --- Creation guard ---


class ConfigDirStatus(Enum):
    """Outcome of the non-recursive config directory creation."""
    FRESHLY_CREATED = "freshly_created"
    ALREADY_EXISTS = "already_exists"
    ERROR = "error"


@dataclass(frozen=True)
class ConfigDirResult:
    """Tagged result of ensure_config_dir()."""
    path: Path
    status: ConfigDirStatus
    error: Optional[str] = None

    @property
    def is_fresh(self) -> bool:
        return self.status == ConfigDirStatus.FRESHLY_CREATED


def ensure_config_dir(path: Path) -> ConfigDirResult:
    """
    Create the config directory without creating missing parents.

    A directory already at the path is the expected "bootstrapped before"
    case. Anything else that prevents creation (missing parent, permission
    denied, a file in the way) is reported as ERROR, never as "exists".

    Args:
        path: Directory to create

    Returns:
        ConfigDirResult with FRESHLY_CREATED, ALREADY_EXISTS or ERROR
    """
    path = Path(path)
    try:
        path.mkdir()
    except FileExistsError:
        if path.is_dir():
            logger.info(f"Config directory {path} already exists")
            return ConfigDirResult(path, ConfigDirStatus.ALREADY_EXISTS)
        return ConfigDirResult(
            path, ConfigDirStatus.ERROR, f"{path} exists and is not a directory"
        )
    except FileNotFoundError:
        return ConfigDirResult(
            path, ConfigDirStatus.ERROR, f"Parent directory does not exist: {path.parent}"
        )
    except OSError as e:
        reason = errno.errorcode.get(e.errno, "OSError") if e.errno else "OSError"
        return ConfigDirResult(path, ConfigDirStatus.ERROR, f"{reason}: {e.strerror or e}")

    logger.info(f"Created config directory {path}")
    return ConfigDirResult(path, ConfigDirStatus.FRESHLY_CREATED)


def probe_config_dir(path: Path) -> ConfigDirStatus:
    """Predict ensure_config_dir()'s outcome without touching the filesystem."""
    path = Path(path)
    if path.is_dir():
        return ConfigDirStatus.ALREADY_EXISTS
    if path.exists() or not path.parent.is_dir():
        return ConfigDirStatus.ERROR
    return ConfigDirStatus.FRESHLY_CREATED
