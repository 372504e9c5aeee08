"""Tests for the localnet-bootstrap command line."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

import localnet.cli as cli
from localnet.bootstrap import CheckpointManager, StageStatus, build_orchestrator

from conftest import RecordingRunner


@pytest.fixture
def recording(monkeypatch) -> RecordingRunner:
    """Route main()'s orchestrator through a RecordingRunner."""
    runner = RecordingRunner()
    monkeypatch.setattr(
        cli, "build_orchestrator", lambda settings: build_orchestrator(settings, runner=runner)
    )
    return runner


def _base_args(tmp_path: Path) -> list:
    return [
        "--config-dir", str(tmp_path / "demo-config"),
        "--state-file", str(tmp_path / "state" / "bootstrap_state.json"),
    ]


class TestParseArgs:
    """Argument parsing and Settings overrides."""

    def test_run_is_default_command(self) -> None:
        args = cli.parse_args([])
        assert args.command == "run"
        assert args.dry_run is False

    def test_flags_without_command_imply_run(self) -> None:
        args = cli.parse_args(["--config-dir", "/tmp/demo-config", "--dry-run"])
        assert args.command == "run"
        assert args.config_dir == Path("/tmp/demo-config")
        assert args.dry_run is True

    def test_settings_from_args(self, tmp_path: Path) -> None:
        args = cli.parse_args(
            _base_args(tmp_path)
            + [
                "--keygen", "/opt/keygen",
                "--snapshot-slot", "3",
                "--debug-assertions",
                "--faucet-mode", "background",
                "--timeout", "60",
            ]
        )
        settings = cli.settings_from_args(args)

        assert settings.config_dir == tmp_path / "demo-config"
        assert settings.keygen_bin == "/opt/keygen"
        assert settings.snapshot_slot == 3
        assert settings.suppress_debug_assertions is False
        assert settings.faucet_in_background
        assert settings.command_timeout_seconds == 60

    def test_unset_flags_keep_env_values(self, monkeypatch) -> None:
        monkeypatch.setenv("LOCALNET_LEDGER_TOOL_BIN", "/opt/ledger-tool")
        settings = cli.settings_from_args(cli.parse_args(["run"]))

        assert settings.ledger_tool_bin == "/opt/ledger-tool"
        assert settings.suppress_debug_assertions is True

    def test_debug_assertion_flags_are_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            cli.parse_args(["--debug-assertions", "--no-debug-assertions"])


class TestMain:
    """End-to-end runs through main()."""

    def test_successful_run(self, tmp_path: Path, recording: RecordingRunner, capsys) -> None:
        assert cli.main(_base_args(tmp_path)) == 0

        out = capsys.readouterr().out
        assert "[STAGE] keygen: Completed" in out
        assert "[BOOTSTRAP] Bootstrap complete." in out
        assert recording.labels[-1] == "faucet"

    def test_failed_run_prints_failing_command(self, tmp_path: Path, monkeypatch, capsys) -> None:
        runner = RecordingRunner(fail_labels={"cluster setup"})
        monkeypatch.setattr(
            cli, "build_orchestrator", lambda settings: build_orchestrator(settings, runner=runner)
        )

        assert cli.main(_base_args(tmp_path)) == 1

        out = capsys.readouterr().out
        assert "Failed stage:  setup" in out
        assert "Command:       cluster setup" in out
        assert "Exit status:   1" in out
        assert "create snapshot" not in runner.labels

    def test_dry_run_has_no_side_effects(self, tmp_path: Path, recording: RecordingRunner, capsys) -> None:
        assert cli.main(_base_args(tmp_path) + ["--dry-run"]) == 0

        out = capsys.readouterr().out
        assert "Dry run" in out
        assert "$ solana-keygen new --no-passphrase -so" in out
        assert "create-snapshot 0" in out
        assert recording.calls == []
        assert not (tmp_path / "demo-config").exists()
        assert not (tmp_path / "state").exists()

    def test_invalid_configuration_exits_2(self, tmp_path: Path, capsys) -> None:
        args = ["--config-dir", str(tmp_path / "cfg"), "--state-file", str(tmp_path / "cfg" / "s.json")]

        assert cli.main(args) == 2
        assert "Invalid configuration" in capsys.readouterr().err

    def test_keyboard_interrupt_exits_130(self, tmp_path: Path, monkeypatch, capsys) -> None:
        class Interrupted:
            def run_all(self, config_dir=None):
                raise KeyboardInterrupt

        monkeypatch.setattr(cli, "build_orchestrator", lambda settings: Interrupted())
        assert cli.main(_base_args(tmp_path)) == 130
        assert "Interrupted" in capsys.readouterr().out

    def test_json_logs(self, tmp_path: Path, recording: RecordingRunner, capsys) -> None:
        cli.main(_base_args(tmp_path) + ["--json-logs"])

        err_lines = [line for line in capsys.readouterr().err.splitlines() if line.strip()]
        assert err_lines
        assert all(json.loads(line)["severity"] for line in err_lines)


class TestStatus:
    """The status subcommand reads the run ledger."""

    def test_no_recorded_run(self, tmp_path: Path, capsys) -> None:
        state_file = tmp_path / "none.json"
        assert cli.main(["status", "--state-file", str(state_file)]) == 1
        assert "No recorded run" in capsys.readouterr().out

    def test_after_successful_run(self, tmp_path: Path, recording: RecordingRunner, capsys) -> None:
        cli.main(_base_args(tmp_path))
        capsys.readouterr()

        assert cli.main(["status"] + _base_args(tmp_path)) == 0
        out = capsys.readouterr().out
        assert "keygen" in out and "completed" in out
        assert str(tmp_path / "demo-config") in out

    def test_after_failed_run(self, tmp_path: Path, monkeypatch, capsys) -> None:
        runner = RecordingRunner(fail_labels={"keygen b/vote-account"})
        monkeypatch.setattr(
            cli, "build_orchestrator", lambda settings: build_orchestrator(settings, runner=runner)
        )
        cli.main(_base_args(tmp_path))
        capsys.readouterr()

        assert cli.main(["status"] + _base_args(tmp_path)) == 1
        assert "keygen b/vote-account (exit 1)" in capsys.readouterr().out

    def test_incomplete_run_is_not_success(self, tmp_path: Path, capsys) -> None:
        """A ledger without a completion time (run still going or killed) exits 1."""
        state_file = tmp_path / "state" / "bootstrap_state.json"
        mgr = CheckpointManager(state_file)
        mgr.start_pipeline(tmp_path / "demo-config", ["init", "keygen"])
        mgr.mark_running("init")

        assert cli.main(["status", "--state-file", str(state_file)]) == 1


class TestInterruptedRun:
    """Ctrl-C during a stage leaves a consistent ledger."""

    def test_interrupt_marks_stage_failed(self, tmp_path: Path, monkeypatch, capsys) -> None:
        """The interrupted stage is recorded as failed and status reports failure."""
        runner = RecordingRunner(interrupt_labels={"cluster setup"})
        monkeypatch.setattr(
            cli, "build_orchestrator", lambda settings: build_orchestrator(settings, runner=runner)
        )

        assert cli.main(_base_args(tmp_path)) == 130
        assert "create snapshot" not in runner.labels

        setup = CheckpointManager(tmp_path / "state" / "bootstrap_state.json").load().stages["setup"]
        assert setup.status == StageStatus.FAILED
        assert setup.error == "interrupted"

        capsys.readouterr()
        assert cli.main(["status"] + _base_args(tmp_path)) == 1
        assert "interrupted" in capsys.readouterr().out


class TestLogSettings:
    """Logging configuration from env and flags."""

    def test_invalid_log_level_exits_2(self, tmp_path: Path, monkeypatch, capsys) -> None:
        """An unknown level is a configuration error, not a traceback."""
        monkeypatch.setenv("LOCALNET_LOG_LEVEL", "verbose")

        assert cli.main(["status", "--state-file", str(tmp_path / "state.json")]) == 2
        assert "log_level" in capsys.readouterr().err

    def test_lowercase_log_level_accepted(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("LOCALNET_LOG_LEVEL", "debug")

        assert cli.main(["status", "--state-file", str(tmp_path / "state.json")]) == 1
        assert logging.getLogger().level == logging.DEBUG

    def test_json_logs_tag_failed_stage(self, tmp_path: Path, monkeypatch, capsys) -> None:
        """The failure log line names the stage in its step field."""
        runner = RecordingRunner(fail_labels={"create snapshot"})
        monkeypatch.setattr(
            cli, "build_orchestrator", lambda settings: build_orchestrator(settings, runner=runner)
        )
        cli.main(_base_args(tmp_path) + ["--json-logs"])

        records = [json.loads(line) for line in capsys.readouterr().err.splitlines() if line.strip()]
        failed = [r for r in records if r["severity"] == "ERROR" and r.get("step") == "snapshot"]
        assert failed
        assert "Traceback" in failed[0]["exception"]
