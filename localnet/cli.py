"""
Bootstrap a local two-validator demo cluster.

Usage:
    localnet-bootstrap [run] [--config-dir DIR] [--dry-run] [--faucet-mode MODE]
    localnet-bootstrap status
    localnet-bootstrap preflight [--quiet]

Stages:
    1. init      - Create the config directory (non-recursive)
    2. keygen    - Generate identity/stake/vote keypairs for validators a and b
                   (only when the config directory was just created)
    3. setup     - Run the cluster setup script with both validators
    4. snapshot  - Create a ledger snapshot of validator a at slot 0
    5. faucet    - Launch the faucet
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .bootstrap import CheckpointManager, build_orchestrator
from .logging_config import setup_logging
from .preflight import run_preflight
from .settings import Settings

logger = logging.getLogger(__name__)

COMMANDS = ("run", "status", "preflight")

# argparse dest -> Settings field
_SETTING_FLAGS = {
    "config_dir": "config_dir",
    "keygen": "keygen_bin",
    "setup_script": "setup_script",
    "ledger_tool": "ledger_tool_bin",
    "faucet_script": "faucet_script",
    "ledger_dir": "ledger_dir",
    "snapshot_slot": "snapshot_slot",
    "debug_assertions": "suppress_debug_assertions",
    "faucet_mode": "faucet_mode",
    "timeout": "command_timeout_seconds",
    "state_file": "state_file",
}


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config-dir",
        type=Path,
        help="Bootstrap root directory (default: config)",
    )
    parser.add_argument(
        "--state-file",
        type=Path,
        help="Run ledger path, outside the config directory (default: .localnet/bootstrap_state.json)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging, including child process output",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=None,
        help="Emit log lines as JSON",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with run, status and preflight subcommands."""
    parser = argparse.ArgumentParser(
        prog="localnet-bootstrap",
        description="Bootstrap a local two-validator demo cluster",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the bootstrap sequence")
    _add_common_args(run_parser)
    _add_collaborator_args(run_parser)
    run_parser.add_argument(
        "--ledger-dir",
        type=Path,
        help="Ledger directory to snapshot (default: <config-dir>/a/ledger)",
    )
    run_parser.add_argument(
        "--snapshot-slot",
        type=int,
        help="Slot to snapshot (default: 0)",
    )
    toggle = run_parser.add_mutually_exclusive_group()
    toggle.add_argument(
        "--no-debug-assertions",
        dest="debug_assertions",
        action="store_const",
        const=True,
        help="Set NDEBUG=1 for the setup and faucet children (default)",
    )
    toggle.add_argument(
        "--debug-assertions",
        dest="debug_assertions",
        action="store_const",
        const=False,
        help="Leave debug assertions enabled (no NDEBUG)",
    )
    run_parser.add_argument(
        "--faucet-mode",
        choices=["foreground", "background"],
        help="Wait for the faucet to exit, or start it detached (default: foreground)",
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        help="Per-command timeout in seconds for keygen, setup and snapshot",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show stages and commands that would run without executing",
    )

    status_parser = subparsers.add_parser("status", help="Show the last recorded run")
    _add_common_args(status_parser)

    preflight_parser = subparsers.add_parser("preflight", help="Check readiness")
    _add_common_args(preflight_parser)
    _add_collaborator_args(preflight_parser)
    preflight_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress PASS lines (only show FAIL/SKIP)",
    )
    return parser


def _add_collaborator_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--keygen", help="Key generator executable (default: solana-keygen)")
    parser.add_argument(
        "--setup-script", help="Cluster setup script (default: multinode-demo/setup.sh)"
    )
    parser.add_argument("--ledger-tool", help="Ledger tool executable (default: solana-ledger-tool)")
    parser.add_argument(
        "--faucet-script", help="Faucet launcher (default: multinode-demo/faucet.sh)"
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments; `run` is implied when no command is given."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or (args[0] not in COMMANDS and args[0] not in ("-h", "--help")):
        args.insert(0, "run")
    return build_parser().parse_args(args)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Build Settings with explicit CLI flags overriding env/.env values."""
    overrides: Dict[str, Any] = {}
    for dest, field_name in _SETTING_FLAGS.items():
        value = getattr(args, dest, None)
        if value is not None:
            overrides[field_name] = value
    if getattr(args, "json_logs", None):
        overrides["log_json"] = True
    return Settings(**overrides)


def print_dry_run(plan: List[Dict[str, Any]]) -> None:
    """Print dry run plan."""
    print("\n[BOOTSTRAP] Dry run - stages that would execute:\n")
    print(f"{'#':<4} {'Stage':<10} {'Action':<8} {'Reason'}")
    print("-" * 60)
    for i, stage in enumerate(plan, 1):
        print(f"{i:<4} {stage['name']:<10} {stage['action']:<8} {stage['reason']}")
        for command in stage["commands"]:
            print(f"{'':<4} {'':<10} $ {command}")
    print()


def print_summary(summary: Dict[str, Any]) -> None:
    """Print execution summary."""
    print("\n" + "=" * 60)
    print("[BOOTSTRAP] Execution Summary")
    print("=" * 60)
    print(f"Total stages:  {summary['total_stages']}")
    print(f"Completed:     {summary['completed']}")
    print(f"Skipped:       {summary['skipped']}")
    print(f"Failed:        {summary['failed']}")
    print(f"Duration:      {summary['duration_seconds']:.1f}s")

    if summary["failed"]:
        print(f"\nFailed stage:  {summary['failed_stage']}")
        if summary.get("failed_command"):
            print(f"Command:       {summary['failed_command']}")
            print(f"Exit status:   {summary['exit_code']}")
        print(f"Error:         {summary['error']}")


def print_status(checkpoint: CheckpointManager) -> int:
    """Print the recorded run ledger. Returns exit status."""
    if not checkpoint.state_file.exists():
        print(f"[BOOTSTRAP] No recorded run at {checkpoint.state_file}")
        return 1

    state = checkpoint.load()
    summary = checkpoint.get_summary()
    print(f"\n[BOOTSTRAP] Last run: {summary['pipeline_started']}")
    print(f"Config dir:    {summary['config_dir']}")
    print(f"Completed at:  {summary['pipeline_completed'] or '-'}")
    print()
    print(f"{'Stage':<10} {'Status':<10} {'Details'}")
    print("-" * 60)
    for stage in state.stages.values():
        details = ""
        if stage.error:
            details = stage.error
            if stage.failed_command:
                details = f"{stage.failed_command} (exit {stage.exit_code}): {stage.error}"
        elif stage.stats:
            details = json.dumps(stage.stats, default=str)
        print(f"{stage.name:<10} {stage.status.value:<10} {details}")
    print()
    if summary["failed"] or not summary["pipeline_completed"]:
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ValidationError as e:
        print(f"[BOOTSTRAP] Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    level = "DEBUG" if args.verbose else settings.log_level
    setup_logging(level=level, json_format=settings.log_json)

    if args.command == "status":
        return print_status(CheckpointManager(state_file=settings.state_file))

    if args.command == "preflight":
        return run_preflight(settings, quiet=args.quiet)

    orchestrator = build_orchestrator(settings)

    if args.dry_run:
        print_dry_run(orchestrator.dry_run())
        return 0

    print("\n" + "=" * 60)
    print("[BOOTSTRAP] Local Demo Cluster Bootstrap")
    print("=" * 60)
    print(f"Start time:  {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Config dir:  {settings.config_dir}")
    print(f"Faucet mode: {settings.faucet_mode}")
    print()

    try:
        summary = orchestrator.run_all(config_dir=settings.config_dir)
    except KeyboardInterrupt:
        print("\n[BOOTSTRAP] Interrupted.")
        return 130

    print_summary(summary)

    if summary["failed"] > 0:
        print("\n[BOOTSTRAP] Bootstrap failed. Check logs for details.")
        return 1

    print("\n[BOOTSTRAP] Bootstrap complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
