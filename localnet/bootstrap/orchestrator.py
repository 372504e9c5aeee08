"""
Stage orchestrator for the bootstrap pipeline.

Executes stages strictly in order, records each outcome in the run ledger,
and stops at the first failure.
"""

from __future__ import annotations

import logging
import shlex
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from ..process import CommandFailedError, CommandRunner
from ..settings import Settings, get_settings
from .checkpoint import CheckpointManager, ConsoleReporter, ProgressReporter
from .stages import create_all_stages

logger = logging.getLogger(__name__)


@runtime_checkable
class Stage(Protocol):
    """Protocol defining the interface for pipeline stages."""

    @property
    def name(self) -> str:
        """Unique stage name."""
        ...

    def skip_reason(self, context: Dict[str, Any]) -> Optional[str]:
        """Reason to skip this stage, or None to run it."""
        ...

    def plan(self, context: Dict[str, Any]) -> List[List[str]]:
        """Commands the stage would execute, for dry runs."""
        ...

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute the stage.

        Args:
            context: Shared context dict for passing data between stages

        Returns:
            Dict with execution statistics

        Raises:
            Exception: Any failure; the orchestrator stops the run
        """
        ...

    def validate_output(self) -> Tuple[bool, str]:
        """Validate the stage's output after it ran."""
        ...


class StageOrchestrator:
    """
    Orchestrates execution of bootstrap stages.

    Handles:
    - Stage registration and ordering
    - Stage-declared skips (e.g. keygen on an existing config directory)
    - Fail-fast execution with the failing invocation reported
    - Run ledger persistence and progress reporting
    """

    def __init__(
        self,
        checkpoint_manager: CheckpointManager,
        reporter: Optional[ProgressReporter] = None,
    ):
        self.checkpoint = checkpoint_manager
        self.reporter = reporter or ConsoleReporter()
        self._stages: List[Stage] = []
        self._context: Dict[str, Any] = {}

    def register_stage(self, stage: Stage) -> None:
        if not isinstance(stage, Stage):
            raise TypeError(f"Stage must implement Stage protocol, got {type(stage)}")
        if any(s.name == stage.name for s in self._stages):
            raise ValueError(f"Stage '{stage.name}' is already registered")
        self._stages.append(stage)
        logger.debug(f"Registered stage: {stage.name}")

    @property
    def stages(self) -> List[Stage]:
        return list(self._stages)

    def execute_stage(self, stage: Stage) -> Dict[str, Any]:
        """
        Execute a single stage.

        Args:
            stage: Stage to execute

        Returns:
            Dict with "status" ("completed" or "failed") and failure details
        """
        start_time = time.time()

        self.checkpoint.mark_running(stage.name)
        self.reporter.stage_start(stage.name)

        try:
            stats = stage.run(self._context)
            duration = time.time() - start_time
            stats["duration_seconds"] = round(duration, 2)

            is_valid, validation_msg = stage.validate_output()
            if not is_valid:
                raise RuntimeError(f"Output validation failed: {validation_msg}")

            self.checkpoint.mark_completed(stage.name, stats)
            self.reporter.stage_complete(stage.name, duration, stats)
            return {"name": stage.name, "status": "completed"}

        except Exception as e:
            duration = time.time() - start_time
            failed_command = None
            exit_code = None
            if isinstance(e, CommandFailedError):
                failed_command = e.result.label
                exit_code = e.result.returncode
            error_msg = str(e)
            self.checkpoint.mark_failed(stage.name, error_msg, failed_command, exit_code)
            self.reporter.stage_error(stage.name, error_msg)
            logger.exception(
                f"Stage '{stage.name}' failed after {duration:.1f}s", extra={"step": stage.name}
            )
            return {
                "name": stage.name,
                "status": "failed",
                "error": error_msg,
                "failed_command": failed_command,
                "exit_code": exit_code,
            }

        except KeyboardInterrupt:
            self.checkpoint.mark_failed(stage.name, "interrupted")
            self.reporter.stage_error(stage.name, "interrupted")
            logger.warning(f"Stage '{stage.name}' interrupted", extra={"step": stage.name})
            raise

    def run_all(self, config_dir: Optional[Path] = None) -> Dict[str, Any]:
        """
        Execute all registered stages in order, stopping at the first failure.

        Args:
            config_dir: Recorded in the run ledger

        Returns:
            Dict with execution summary
        """
        pipeline_start = time.time()
        self._context = {}
        self.checkpoint.start_pipeline(config_dir or Path("."), [s.name for s in self._stages])

        summary: Dict[str, Any] = {
            "total_stages": len(self._stages),
            "completed": 0,
            "skipped": 0,
            "failed": 0,
            "failed_stage": None,
            "stages": [],
        }

        for stage in self._stages:
            skip_reason = stage.skip_reason(self._context)
            if skip_reason is not None:
                self.checkpoint.mark_skipped(stage.name, skip_reason)
                self.reporter.stage_skipped(stage.name, skip_reason)
                logger.info(f"Stage '{stage.name}' skipped: {skip_reason}", extra={"step": stage.name})
                summary["skipped"] += 1
                summary["stages"].append({"name": stage.name, "status": "skipped"})
                continue

            outcome = self.execute_stage(stage)
            summary["stages"].append(outcome)

            if outcome["status"] == "completed":
                summary["completed"] += 1
            else:
                summary["failed"] += 1
                summary["failed_stage"] = stage.name
                summary["failed_command"] = outcome["failed_command"]
                summary["exit_code"] = outcome["exit_code"]
                summary["error"] = outcome["error"]
                break

        pipeline_duration = time.time() - pipeline_start
        summary["duration_seconds"] = round(pipeline_duration, 2)

        if summary["failed"] == 0:
            self.checkpoint.mark_pipeline_complete()
            self.reporter.pipeline_complete(len(self._stages), pipeline_duration)

        return summary

    def dry_run(self) -> List[Dict[str, Any]]:
        """
        Show what stages would run without executing anything.

        Returns:
            List of dicts with stage name, action, reason and commands
        """
        plan = []
        context: Dict[str, Any] = {}
        for stage in self._stages:
            skip_reason = stage.skip_reason(context)
            commands = [shlex.join(argv) for argv in stage.plan(context)]
            if skip_reason is not None:
                plan.append({
                    "name": stage.name,
                    "action": "skip",
                    "reason": skip_reason,
                    "commands": commands,
                })
            else:
                plan.append({
                    "name": stage.name,
                    "action": "run",
                    "reason": "will run",
                    "commands": commands,
                })
        return plan


def build_orchestrator(
    settings: Settings,
    runner: Optional[CommandRunner] = None,
    reporter: Optional[ProgressReporter] = None,
) -> StageOrchestrator:
    """Create an orchestrator with all bootstrap stages registered."""
    orchestrator = StageOrchestrator(
        checkpoint_manager=CheckpointManager(state_file=settings.state_file),
        reporter=reporter,
    )
    for stage in create_all_stages(settings, runner):
        orchestrator.register_stage(stage)
    return orchestrator


def run(
    config_dir: Optional[Path] = None,
    *,
    settings: Optional[Settings] = None,
    runner: Optional[CommandRunner] = None,
    reporter: Optional[ProgressReporter] = None,
) -> int:
    """
    Bootstrap the demo cluster rooted at config_dir.

    Args:
        config_dir: Overrides settings.config_dir when given
        settings: Bootstrap configuration (default: get_settings())
        runner: CommandRunner for the external collaborators
        reporter: ProgressReporter for console output

    Returns:
        0 on success, 1 if any stage failed
    """
    if settings is None:
        settings = get_settings()
    if config_dir is not None:
        settings = Settings.model_validate({**settings.model_dump(), "config_dir": Path(config_dir)})

    orchestrator = build_orchestrator(settings, runner=runner, reporter=reporter)
    summary = orchestrator.run_all(config_dir=settings.config_dir)
    return 1 if summary["failed"] else 0
