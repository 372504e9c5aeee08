"""
Preflight readiness checks for a bootstrap run.

Checks that every external collaborator can be executed and that the config
directory is in a usable state, and reports pass/fail status with fixes.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Optional

from .bootstrap.layout import build_roles
from .bootstrap.validation import missing_keypair_files, validate_config_dir
from .settings import Settings


def print_pass(msg: str, quiet: bool) -> None:
    """Print a passing check line."""
    if not quiet:
        print(f"[PASS] {msg}")


def print_fail(msg: str, fix: str) -> None:
    """Print a failing check line with fix guidance."""
    print(f"[FAIL] {msg}")
    print(f"       Fix: {fix}")


def print_skip(msg: str) -> None:
    """Print a skipped (informational) check line."""
    print(f"[SKIP] {msg}")


def resolve_executable(command: str) -> Optional[str]:
    """
    Resolve a collaborator the way the child process launch will.

    Bare names are looked up on PATH; anything containing a path separator
    is checked as a file path.
    """
    if os.sep in command or (os.altsep and os.altsep in command):
        path = Path(command)
        if path.is_file() and os.access(path, os.X_OK):
            return str(path)
        return None
    return shutil.which(command)


def check_collaborators(settings: Settings, quiet: bool) -> int:
    """Check each external binary/script is executable. Returns number of failures."""
    collaborators = {
        "Key generator": (settings.keygen_bin, "--keygen"),
        "Cluster setup script": (settings.setup_script, "--setup-script"),
        "Ledger tool": (settings.ledger_tool_bin, "--ledger-tool"),
        "Faucet launcher": (settings.faucet_script, "--faucet-script"),
    }

    failures = 0
    for label, (command, flag) in collaborators.items():
        resolved = resolve_executable(command)
        if resolved:
            print_pass(f"{label} ({resolved})", quiet)
        else:
            print_fail(
                f"{label} ({command}) not found or not executable",
                f"install it, add it to PATH, or pass {flag} <path>",
            )
            failures += 1
    return failures


def check_config_dir(settings: Settings, quiet: bool) -> int:
    """Check config directory state. Returns number of failures."""
    config_dir = settings.config_dir
    ok, reason = validate_config_dir(config_dir)
    if not ok:
        print_fail(
            f"Config directory ({reason})",
            "pass --config-dir with an existing parent directory",
        )
        return 1

    if not config_dir.exists():
        print_pass(f"{reason} (keypairs will be generated)", quiet)
        return 0

    missing = missing_keypair_files(build_roles(config_dir))
    if missing:
        print_fail(
            f"Config directory {config_dir} exists but {len(missing)} keypair file(s) are missing",
            f"remove {config_dir} so keypairs are regenerated",
        )
        return 1

    print_pass(f"{reason} (keypairs present, generation will be skipped)", quiet)
    return 0


def check_faucet_mode(settings: Settings) -> int:
    """Report the faucet launch mode. Informational only."""
    if settings.faucet_in_background:
        print_skip(f"Faucet runs in background, log: {settings.config_dir / 'faucet.log'}")
    else:
        print_skip("Faucet runs in foreground; bootstrap returns when it exits")
    return 0


def run_preflight(settings: Settings, quiet: bool = False) -> int:
    """Run all preflight checks and report a summary. Returns exit status."""
    print()
    print("=" * 50)
    print("PREFLIGHT CHECK")
    print("=" * 50)
    print()

    total_checks = 0
    total_failures = 0

    print("--- External collaborators ---")
    total_failures += check_collaborators(settings, quiet)
    total_checks += 4
    print()

    print("--- Config directory ---")
    total_failures += check_config_dir(settings, quiet)
    total_checks += 1
    print()

    print("--- Faucet ---")
    check_faucet_mode(settings)
    print()

    passed = total_checks - total_failures
    print("=" * 50)
    print(f"{passed}/{total_checks} checks passed")

    if total_failures > 0:
        print("=" * 50)
        return 1

    print("Ready to bootstrap.")
    print("=" * 50)
    return 0
