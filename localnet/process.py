"""
Child process execution for the external bootstrap collaborators.

Every invocation yields a CommandResult carrying the exit status and the
captured output. Environment overrides (e.g. NDEBUG=1) are applied to the
child only; os.environ is never mutated.
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

logger = logging.getLogger(__name__)

# Shell conventions for "command not found" / "not executable".
EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126

_TAIL_LINES = 5

Arg = Union[str, Path, int]


def _decode(output: Union[bytes, str, None]) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def _tail(text: str, lines: int = _TAIL_LINES) -> str:
    return " | ".join(line for line in text.strip().splitlines()[-lines:] if line.strip())


@dataclass
class CommandResult:
    """Outcome of one external invocation."""
    label: str
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False
    timeout: Optional[float] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def describe_failure(self) -> str:
        if self.timed_out:
            message = f"'{self.label}' timed out after {self.timeout}s"
        else:
            message = f"'{self.label}' exited with status {self.returncode}"
        tail = _tail(self.stderr or self.stdout)
        if tail:
            message += f": {tail}"
        return message

    def check(self) -> CommandResult:
        """Raise CommandFailedError unless the command succeeded."""
        if not self.ok:
            raise CommandFailedError(self)
        return self


class CommandFailedError(RuntimeError):
    """Raised when an external invocation exits non-zero or times out."""

    def __init__(self, result: CommandResult):
        super().__init__(result.describe_failure())
        self.result = result


class CommandRunner:
    """
    Runs external commands synchronously or launches them detached.

    Handles:
    - Per-invocation environment overrides
    - Optional timeout (the child is killed when it expires)
    - Output capture with DEBUG logging
    - Missing or non-executable binaries as failed results
    """

    def __init__(self, cwd: Optional[Path] = None, base_env: Optional[Mapping[str, str]] = None):
        """
        Initialize runner.

        Args:
            cwd: Working directory for children (default: current directory)
            base_env: Environment children inherit (default: os.environ at call time)
        """
        self.cwd = Path(cwd) if cwd is not None else None
        self.base_env = dict(base_env) if base_env is not None else None

    def _child_env(self, overrides: Optional[Mapping[str, str]]) -> Dict[str, str]:
        env = dict(self.base_env if self.base_env is not None else os.environ)
        if overrides:
            env.update(overrides)
        return env

    def run(
        self,
        argv: Sequence[Arg],
        *,
        label: str,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        capture: bool = True,
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            argv: Program and arguments
            label: Human-readable invocation name used in reports
            env: Environment overrides for this child only
            timeout: Seconds before the child is killed (None for no limit)
            capture: Capture stdout/stderr instead of inheriting the terminal

        Returns:
            CommandResult (never raises for child failures; call .check())
        """
        args = [str(a) for a in argv]
        prefix = " ".join(f"{k}={v}" for k, v in (env or {}).items())
        logger.info(f"[{label}] {prefix + ' ' if prefix else ''}{shlex.join(args)}")

        start_time = time.time()
        try:
            completed = subprocess.run(
                args,
                cwd=self.cwd,
                env=self._child_env(env),
                stdin=subprocess.DEVNULL if capture else None,
                capture_output=capture,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as e:
            return self._spawn_failure(label, args, EXIT_NOT_FOUND, e, start_time)
        except PermissionError as e:
            return self._spawn_failure(label, args, EXIT_NOT_EXECUTABLE, e, start_time)
        except subprocess.TimeoutExpired as e:
            duration = time.time() - start_time
            logger.error(f"[{label}] killed after {timeout}s timeout")
            return CommandResult(
                label=label,
                argv=args,
                returncode=-signal.SIGKILL,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                duration_seconds=duration,
                timed_out=True,
                timeout=timeout,
            )

        result = CommandResult(
            label=label,
            argv=args,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration_seconds=time.time() - start_time,
        )
        if result.stdout:
            logger.debug(f"[{label}] stdout:\n{result.stdout.rstrip()}")
        if result.stderr:
            logger.debug(f"[{label}] stderr:\n{result.stderr.rstrip()}")
        if not result.ok:
            logger.warning(f"[{label}] exited with status {result.returncode}")
        return result

    def launch(
        self,
        argv: Sequence[Arg],
        *,
        label: str,
        log_path: Path,
        env: Optional[Mapping[str, str]] = None,
    ) -> subprocess.Popen:
        """
        Start a command detached in its own session, appending output to log_path.

        Raises:
            CommandFailedError: If the program cannot be started
        """
        args = [str(a) for a in argv]
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"[{label}] {shlex.join(args)} (background, log: {log_path})")

        start_time = time.time()
        try:
            with open(log_path, "ab") as log:
                return subprocess.Popen(
                    args,
                    cwd=self.cwd,
                    env=self._child_env(env),
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except FileNotFoundError as e:
            raise CommandFailedError(
                self._spawn_failure(label, args, EXIT_NOT_FOUND, e, start_time)
            ) from e
        except PermissionError as e:
            raise CommandFailedError(
                self._spawn_failure(label, args, EXIT_NOT_EXECUTABLE, e, start_time)
            ) from e

    @staticmethod
    def _spawn_failure(
        label: str, args: List[str], returncode: int, error: OSError, start_time: float
    ) -> CommandResult:
        logger.error(f"[{label}] could not start {args[0]}: {error}")
        return CommandResult(
            label=label,
            argv=args,
            returncode=returncode,
            stderr=str(error),
            duration_seconds=time.time() - start_time,
        )
