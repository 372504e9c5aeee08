"""
Stage implementations for the bootstrap pipeline.

Each stage wraps one external collaborator's command-line contract. Stages
raise on failure; the orchestrator records the failure and stops the run.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..process import CommandFailedError, CommandResult, CommandRunner
from ..settings import Settings
from .layout import (
    ConfigDirResult,
    ConfigDirStatus,
    ValidatorRole,
    build_roles,
    ensure_config_dir,
    probe_config_dir,
)
from .validation import missing_keypair_files, validate_keypair_files

logger = logging.getLogger(__name__)

CONFIG_DIR_RESULT = "config_dir_result"


class ConfigDirError(RuntimeError):
    """Raised when the config directory can be neither created nor reused."""

    pass


class MissingKeypairError(RuntimeError):
    """Raised when cluster setup would be handed a keypair path that does not exist."""

    def __init__(self, missing: Sequence[Path]):
        listed = ", ".join(str(p) for p in missing)
        super().__init__(
            f"Missing keypair file(s): {listed}. "
            "Remove the config directory to regenerate all keypairs."
        )
        self.missing = list(missing)


class InitConfigDirStage:
    """
    Stage 1: Create the config directory (non-recursively).

    The outcome is stored in the context; key generation runs only when the
    directory was freshly created.
    """

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)

    @property
    def name(self) -> str:
        return "init"

    def skip_reason(self, context: Dict[str, Any]) -> Optional[str]:
        return None

    def plan(self, context: Dict[str, Any]) -> List[List[str]]:
        return []

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        result = ensure_config_dir(self.config_dir)
        context[CONFIG_DIR_RESULT] = result
        if result.status == ConfigDirStatus.ERROR:
            raise ConfigDirError(f"Cannot create config directory {self.config_dir}: {result.error}")
        return {"config_dir": str(self.config_dir), "status": result.status.value}

    def validate_output(self) -> Tuple[bool, str]:
        if self.config_dir.is_dir():
            return True, f"{self.config_dir} exists"
        return False, f"{self.config_dir} is not a directory"


class KeygenStage:
    """
    Stage 2: Generate identity, stake and vote keypairs for every role.

    Runs only on a freshly created config directory, so existing
    credentials are never regenerated or overwritten.
    """

    def __init__(
        self,
        roles: Sequence[ValidatorRole],
        runner: CommandRunner,
        keygen_bin: str = "solana-keygen",
        timeout: Optional[float] = None,
    ):
        """
        Initialize keygen stage.

        Args:
            roles: Roles to generate keypairs for, in order
            runner: CommandRunner used to invoke the key generator
            keygen_bin: Key generator executable
            timeout: Per-invocation timeout in seconds
        """
        self.roles = list(roles)
        self.runner = runner
        self.keygen_bin = keygen_bin
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "keygen"

    def argv(self, path: Path) -> List[str]:
        return [self.keygen_bin, "new", "--no-passphrase", "-so", str(path)]

    def skip_reason(self, context: Dict[str, Any]) -> Optional[str]:
        result: Optional[ConfigDirResult] = context.get(CONFIG_DIR_RESULT)
        if result is not None:
            status = result.status
        else:
            # Dry run: init has not executed, predict its outcome.
            status = probe_config_dir(self.roles[0].directory.parent)
        if status == ConfigDirStatus.ERROR:
            return "config directory cannot be created, run stops at init"
        if status == ConfigDirStatus.FRESHLY_CREATED:
            return None

        missing = missing_keypair_files(self.roles)
        if missing:
            logger.warning(
                f"Config directory exists but {len(missing)} keypair file(s) are missing; "
                "they will not be regenerated"
            )
        return "config directory already exists, keeping existing keypairs"

    def plan(self, context: Dict[str, Any]) -> List[List[str]]:
        return [self.argv(path) for role in self.roles for _, path in role.generation_paths()]

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        generated = 0
        for role in self.roles:
            role.directory.mkdir(exist_ok=True)
            for kind, path in role.generation_paths():
                label = f"keygen {role.name}/{kind.value}"
                self.runner.run(self.argv(path), label=label, timeout=self.timeout).check()
                generated += 1
        return {"keypairs": generated, "roles": ",".join(r.name for r in self.roles)}

    def validate_output(self) -> Tuple[bool, str]:
        return validate_keypair_files(self.roles)


class ClusterSetupStage:
    """
    Stage 3: Hand the keypairs to the cluster setup script.

    Passes one --bootstrap-validator group per role, in role order, each as
    identity, vote-account, stake-account.
    """

    def __init__(
        self,
        roles: Sequence[ValidatorRole],
        runner: CommandRunner,
        setup_script: str = "multinode-demo/setup.sh",
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ):
        self.roles = list(roles)
        self.runner = runner
        self.setup_script = setup_script
        self.env = dict(env or {})
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "setup"

    def argv(self) -> List[str]:
        args = [self.setup_script]
        for role in self.roles:
            args.extend(role.bootstrap_args())
        return args

    def skip_reason(self, context: Dict[str, Any]) -> Optional[str]:
        return None

    def plan(self, context: Dict[str, Any]) -> List[List[str]]:
        return [self.argv()]

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        missing = missing_keypair_files(self.roles)
        if missing:
            raise MissingKeypairError(missing)

        result = self.runner.run(
            self.argv(), label="cluster setup", env=self.env, timeout=self.timeout
        ).check()
        return {"validators": len(self.roles), "returncode": result.returncode}

    def validate_output(self) -> Tuple[bool, str]:
        # The setup script's own artifacts are opaque to the orchestrator.
        return True, "exit status checked"


class SnapshotStage:
    """
    Stage 4: Create a ledger snapshot of the first validator at the given slot.
    """

    def __init__(
        self,
        ledger_dir: Path,
        runner: CommandRunner,
        ledger_tool_bin: str = "solana-ledger-tool",
        slot: int = 0,
        timeout: Optional[float] = None,
    ):
        self.ledger_dir = Path(ledger_dir)
        self.runner = runner
        self.ledger_tool_bin = ledger_tool_bin
        self.slot = slot
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "snapshot"

    def argv(self) -> List[str]:
        return [self.ledger_tool_bin, "-l", str(self.ledger_dir), "create-snapshot", str(self.slot)]

    def skip_reason(self, context: Dict[str, Any]) -> Optional[str]:
        return None

    def plan(self, context: Dict[str, Any]) -> List[List[str]]:
        return [self.argv()]

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        self.runner.run(self.argv(), label="create snapshot", timeout=self.timeout).check()
        return {"ledger_dir": str(self.ledger_dir), "slot": self.slot}

    def validate_output(self) -> Tuple[bool, str]:
        return True, "exit status checked"


class FaucetStage:
    """
    Stage 5: Launch the faucet.

    In foreground mode the stage waits for the faucet to exit. In background
    mode it starts the faucet detached and only checks that it survives the
    startup grace period.
    """

    def __init__(
        self,
        runner: CommandRunner,
        faucet_script: str = "multinode-demo/faucet.sh",
        env: Optional[Mapping[str, str]] = None,
        background: bool = False,
        log_path: Optional[Path] = None,
        startup_grace_seconds: float = 1.0,
    ):
        self.runner = runner
        self.faucet_script = faucet_script
        self.env = dict(env or {})
        self.background = background
        self.log_path = Path(log_path or "faucet.log")
        self.startup_grace_seconds = startup_grace_seconds
        self.process: Optional[subprocess.Popen] = None

    @property
    def name(self) -> str:
        return "faucet"

    def skip_reason(self, context: Dict[str, Any]) -> Optional[str]:
        return None

    def plan(self, context: Dict[str, Any]) -> List[List[str]]:
        return [[self.faucet_script]]

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        argv = [self.faucet_script]
        if not self.background:
            result = self.runner.run(argv, label="faucet", env=self.env, capture=False).check()
            return {"mode": "foreground", "returncode": result.returncode}

        process = self.runner.launch(argv, label="faucet", env=self.env, log_path=self.log_path)
        try:
            returncode = process.wait(timeout=self.startup_grace_seconds)
        except subprocess.TimeoutExpired:
            self.process = process
            logger.info(f"Faucet running in background (pid {process.pid})")
            return {"mode": "background", "pid": process.pid, "log": str(self.log_path)}

        raise CommandFailedError(
            CommandResult(
                label="faucet",
                argv=argv,
                returncode=returncode,
                stderr=f"faucet exited during startup, see {self.log_path}",
            )
        )

    def validate_output(self) -> Tuple[bool, str]:
        if self.background and self.process is not None and self.process.poll() is not None:
            return False, f"Faucet exited with status {self.process.returncode}"
        return True, "faucet launched"


def create_all_stages(settings: Settings, runner: Optional[CommandRunner] = None) -> List:
    """
    Create all bootstrap stages from settings.

    Args:
        settings: Bootstrap configuration
        runner: CommandRunner shared by all stages (default: new CommandRunner)

    Returns:
        List of stage instances in execution order
    """
    runner = runner or CommandRunner()
    roles = build_roles(settings.config_dir)
    ledger_dir = settings.ledger_dir or roles[0].ledger_dir
    timeout = settings.command_timeout_seconds

    return [
        InitConfigDirStage(settings.config_dir),
        KeygenStage(roles, runner, keygen_bin=settings.keygen_bin, timeout=timeout),
        ClusterSetupStage(
            roles,
            runner,
            setup_script=settings.setup_script,
            env=settings.debug_env,
            timeout=timeout,
        ),
        SnapshotStage(
            ledger_dir,
            runner,
            ledger_tool_bin=settings.ledger_tool_bin,
            slot=settings.snapshot_slot,
            timeout=timeout,
        ),
        FaucetStage(
            runner,
            faucet_script=settings.faucet_script,
            env=settings.debug_env,
            background=settings.faucet_in_background,
            log_path=settings.config_dir / "faucet.log",
            startup_grace_seconds=settings.faucet_startup_grace_seconds,
        ),
    ]
