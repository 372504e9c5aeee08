"""
Run ledger for the bootstrap pipeline.

Records the status, timing, stats and failure details of every step so the
outcome of the last run can be inspected after the process exits. State is
persisted atomically so an interrupted run never leaves a corrupt file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StageStatus(Enum):
    """Status of a pipeline stage."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StageState:
    """State of a single pipeline stage."""
    name: str
    status: StageStatus = StageStatus.PENDING
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None
    failed_command: Optional[str] = None
    exit_code: Optional[int] = None
    stats: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        """Convert to serializable dictionary."""
        return {
            "name": self.name,
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
            "failed_command": self.failed_command,
            "exit_code": self.exit_code,
            "stats": self.stats,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> StageState:
        """Create StageState from dictionary."""
        return cls(
            name=data["name"],
            status=StageStatus(data.get("status", "pending")),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            error=data.get("error"),
            failed_command=data.get("failed_command"),
            exit_code=data.get("exit_code"),
            stats=data.get("stats", {}),
        )


@dataclass
class BootstrapState:
    """Complete bootstrap run state."""
    stages: Dict[str, StageState] = field(default_factory=dict)
    config_dir: Optional[str] = None
    last_updated: Optional[str] = None
    pipeline_started: Optional[str] = None
    pipeline_completed: Optional[str] = None

    def to_dict(self) -> Dict:
        """Convert to serializable dictionary."""
        return {
            "stages": {name: state.to_dict() for name, state in self.stages.items()},
            "config_dir": self.config_dir,
            "last_updated": self.last_updated,
            "pipeline_started": self.pipeline_started,
            "pipeline_completed": self.pipeline_completed,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> BootstrapState:
        """Create BootstrapState from dictionary."""
        stages = {
            name: StageState.from_dict(state_data)
            for name, state_data in data.get("stages", {}).items()
        }
        return cls(
            stages=stages,
            config_dir=data.get("config_dir"),
            last_updated=data.get("last_updated"),
            pipeline_started=data.get("pipeline_started"),
            pipeline_completed=data.get("pipeline_completed"),
        )


class CheckpointManager:
    """
    Manages the bootstrap run ledger.

    Uses atomic file writes (tempfile + os.replace) to prevent
    state corruption on interrupt.
    """

    def __init__(self, state_file: Optional[Path] = None):
        """
        Initialize checkpoint manager.

        Args:
            state_file: Path to state file (default: .localnet/bootstrap_state.json)
        """
        self.state_file = Path(state_file or ".localnet/bootstrap_state.json")
        self._state: Optional[BootstrapState] = None

    def load(self) -> BootstrapState:
        """
        Load state from file.

        Returns:
            BootstrapState (empty if file doesn't exist or is unreadable)
        """
        if self._state is not None:
            return self._state

        if not self.state_file.exists():
            logger.debug(f"No existing state file at {self.state_file}, starting fresh")
            self._state = BootstrapState()
            return self._state

        try:
            with open(self.state_file, "r") as f:
                data = json.load(f)
            self._state = BootstrapState.from_dict(data)
            logger.debug(f"Loaded state from {self.state_file}")
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Corrupted state file, starting fresh: {e}")
            self._state = BootstrapState()
        return self._state

    def save(self, state: BootstrapState) -> None:
        """
        Save state to file atomically.

        Args:
            state: BootstrapState to save
        """
        state.last_updated = _now()
        self._state = state

        self.state_file.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            dir=self.state_file.parent,
            prefix=".bootstrap_state_",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(state.to_dict(), f, indent=2)
            os.replace(temp_path, self.state_file)
            logger.debug(f"Saved state to {self.state_file}")
        except Exception as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise RuntimeError(f"Failed to save checkpoint: {e}") from e

    def start_pipeline(self, config_dir: Path, stage_names: list) -> None:
        """Reset the ledger for a new run over the given stages."""
        state = BootstrapState(
            stages={name: StageState(name=name) for name in stage_names},
            config_dir=str(config_dir),
            pipeline_started=_now(),
        )
        self.save(state)

    def _stage(self, state: BootstrapState, stage_name: str) -> StageState:
        if stage_name not in state.stages:
            state.stages[stage_name] = StageState(name=stage_name)
        return state.stages[stage_name]

    def mark_running(self, stage_name: str) -> None:
        state = self.load()
        stage = self._stage(state, stage_name)
        stage.status = StageStatus.RUNNING
        stage.started_at = _now()
        stage.error = None
        self.save(state)
        logger.debug(f"Stage '{stage_name}' marked as RUNNING")

    def mark_completed(self, stage_name: str, stats: Optional[Dict] = None) -> None:
        state = self.load()
        stage = self._stage(state, stage_name)
        stage.status = StageStatus.COMPLETED
        stage.completed_at = _now()
        stage.stats = stats or {}
        stage.error = None
        self.save(state)
        logger.debug(f"Stage '{stage_name}' marked as COMPLETED")

    def mark_skipped(self, stage_name: str, reason: str) -> None:
        state = self.load()
        stage = self._stage(state, stage_name)
        stage.status = StageStatus.SKIPPED
        stage.completed_at = _now()
        stage.stats = {"reason": reason}
        self.save(state)
        logger.debug(f"Stage '{stage_name}' marked as SKIPPED: {reason}")

    def mark_failed(
        self,
        stage_name: str,
        error: str,
        failed_command: Optional[str] = None,
        exit_code: Optional[int] = None,
    ) -> None:
        """
        Mark stage as failed.

        Args:
            stage_name: Name of the stage
            error: Error message
            failed_command: Label of the invocation that failed, if any
            exit_code: Exit status of that invocation, if any
        """
        state = self.load()
        stage = self._stage(state, stage_name)
        stage.status = StageStatus.FAILED
        stage.completed_at = _now()
        stage.error = error
        stage.failed_command = failed_command
        stage.exit_code = exit_code
        self.save(state)
        logger.error(f"Stage '{stage_name}' marked as FAILED: {error}")

    def mark_pipeline_complete(self) -> None:
        state = self.load()
        state.pipeline_completed = _now()
        self.save(state)
        logger.info("Pipeline marked as COMPLETE")

    def get_summary(self) -> Dict:
        """
        Get summary of the recorded run.

        Returns:
            Dict with stage counts by status
        """
        state = self.load()
        summary = {
            "total_stages": len(state.stages),
            "pending": 0,
            "running": 0,
            "completed": 0,
            "skipped": 0,
            "failed": 0,
            "config_dir": state.config_dir,
            "pipeline_started": state.pipeline_started,
            "pipeline_completed": state.pipeline_completed,
            "last_updated": state.last_updated,
        }
        for stage in state.stages.values():
            summary[stage.status.value] += 1
        return summary


# --- Progress Reporting ---


@runtime_checkable
class ProgressReporter(Protocol):
    """Protocol defining the interface for progress reporting."""

    def stage_start(self, name: str) -> None:
        ...

    def stage_complete(self, name: str, duration_sec: float, stats: Dict) -> None:
        ...

    def stage_error(self, name: str, error: str) -> None:
        ...

    def stage_skipped(self, name: str, reason: str) -> None:
        ...

    def pipeline_complete(self, total_stages: int, duration_sec: float) -> None:
        ...


class ConsoleReporter:
    """
    Reports bootstrap progress to stdout with [STAGE] prefix format.

    Errors are reported on stdout too, so the progress stream reads as one
    sequential transcript; diagnostics go to the logger on stderr.
    """

    def stage_start(self, name: str) -> None:
        print(f"[STAGE] {name}: Starting...", flush=True)

    def stage_complete(self, name: str, duration_sec: float, stats: Dict) -> None:
        summary = ", ".join(
            f"{k}={v}" for k, v in stats.items() if k != "duration_seconds"
        )
        print(f"[STAGE] {name}: Completed in {duration_sec:.1f}s ({summary})", flush=True)

    def stage_error(self, name: str, error: str) -> None:
        print(f"[STAGE] {name}: FAILED - {error}", flush=True)

    def stage_skipped(self, name: str, reason: str) -> None:
        print(f"[STAGE] {name}: Skipped ({reason})", flush=True)

    def pipeline_complete(self, total_stages: int, duration_sec: float) -> None:
        print(
            f"[BOOTSTRAP] Complete: {total_stages}/{total_stages} stages in {duration_sec:.1f}s",
            flush=True,
        )
