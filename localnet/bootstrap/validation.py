"""
Output validation for bootstrap stages.

Validators return (is_valid, reason) tuples and never raise; failures are
communicated via the return value. Credential files are treated as opaque:
only their presence is checked, never their contents.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence, Tuple

from .layout import ValidatorRole

logger = logging.getLogger(__name__)


def missing_keypair_files(roles: Sequence[ValidatorRole]) -> List[Path]:
    """All expected keypair files that are absent, in generation order."""
    missing: List[Path] = []
    for role in roles:
        missing.extend(role.missing_keypairs())
    return missing


def validate_keypair_files(roles: Sequence[ValidatorRole]) -> Tuple[bool, str]:
    """
    Validate that every role has its identity, stake and vote keypair files.

    Args:
        roles: Validator roles to check

    Returns:
        Tuple of (is_valid, reason_message)
    """
    try:
        expected = 3 * len(roles)
        missing = missing_keypair_files(roles)
        if missing:
            listed = ", ".join(str(p) for p in missing)
            return False, f"{len(missing)} of {expected} keypair files missing: {listed}"
        logger.debug(f"Keypair validation passed: {expected} files present")
        return True, f"All {expected} keypair files present"
    except OSError as e:
        logger.debug(f"Keypair validation failed with exception: {e}")
        return False, f"Validation error: {e}"


def validate_config_dir(config_dir: Path) -> Tuple[bool, str]:
    """
    Validate that config_dir can be bootstrapped.

    Checks:
    1. If it exists, it is a directory
    2. If it does not exist, its parent does (creation is non-recursive)
    """
    try:
        config_dir = Path(config_dir)
        if config_dir.exists():
            if not config_dir.is_dir():
                return False, f"Path is not a directory: {config_dir}"
            return True, f"Existing config directory: {config_dir}"
        if not config_dir.parent.is_dir():
            return False, f"Parent directory does not exist: {config_dir.parent}"
        return True, f"Config directory will be created: {config_dir}"
    except OSError as e:
        return False, f"Validation error: {e}"
