"""Shared fixtures: a recording stand-in for the external collaborators."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

import localnet.settings
from localnet.process import CommandResult, CommandRunner
from localnet.settings import Settings


class FakeProcess:
    """Minimal Popen stand-in for background launches."""

    def __init__(self, pid: int = 4242, returncode: Optional[int] = None):
        self.pid = pid
        self.returncode = returncode

    def wait(self, timeout: Optional[float] = None) -> int:
        if self.returncode is None:
            raise subprocess.TimeoutExpired("faucet", timeout)
        return self.returncode

    def poll(self) -> Optional[int]:
        return self.returncode


class RecordingRunner(CommandRunner):
    """
    Records every invocation instead of spawning processes.

    Key generator calls (``... -so <path>``) write a keypair file at <path>
    so the filesystem looks like a real run. Labels in ``fail_labels`` exit 1;
    labels in ``interrupt_labels`` raise KeyboardInterrupt as Ctrl-C would.
    """

    def __init__(
        self,
        fail_labels: Optional[Set[str]] = None,
        launch_returncode: Optional[int] = None,
        interrupt_labels: Optional[Set[str]] = None,
    ):
        super().__init__()
        self.calls: List[Dict] = []
        self.fail_labels = set(fail_labels or ())
        self.interrupt_labels = set(interrupt_labels or ())
        self.launch_returncode = launch_returncode
        self._generated = 0

    def run(self, argv, *, label, env=None, timeout=None, capture=True) -> CommandResult:
        args = [str(a) for a in argv]
        self.calls.append(
            {"label": label, "argv": args, "env": dict(env or {}), "timeout": timeout, "capture": capture}
        )
        if label in self.interrupt_labels:
            raise KeyboardInterrupt
        if label in self.fail_labels:
            return CommandResult(label=label, argv=args, returncode=1, stderr=f"{label} broke")
        if "-so" in args:
            self._generated += 1
            Path(args[-1]).write_text(f'{{"keypair": {self._generated}}}')
        return CommandResult(label=label, argv=args, returncode=0)

    def launch(self, argv, *, label, log_path, env=None):
        self.calls.append(
            {"label": label, "argv": [str(a) for a in argv], "env": dict(env or {}), "background": True}
        )
        return FakeProcess(returncode=self.launch_returncode)

    @property
    def labels(self) -> List[str]:
        return [call["label"] for call in self.calls]

    def call(self, label: str) -> Dict:
        return next(c for c in self.calls if c["label"] == label)


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    return tmp_path / "demo-config"


@pytest.fixture
def settings(tmp_path: Path, config_dir: Path) -> Settings:
    return Settings(config_dir=config_dir, state_file=tmp_path / "state" / "bootstrap_state.json")


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path: Path):
    """Keep LOCALNET_* variables and a stray .env from leaking into Settings."""
    for key in list(os.environ):
        if key.upper().startswith("LOCALNET_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    localnet.settings._settings = None
    yield
    localnet.settings._settings = None

    # Drop handlers installed by setup_logging(); they hold captured streams.
    root = logging.getLogger()
    for handler in root.handlers[:]:
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(logging.WARNING)
