"""CLI behaviour tests."""

from __future__ import annotations

import os
import signal
import time
from pathlib import Path

import pytest

from covpipe import cli
from covpipe.cli import _build_parser, main
from covpipe.models import PipelineResult, RunSummary


def test_cli_defaults_to_current_directory() -> None:
    args = _build_parser().parse_args([])

    assert args.path == "."
    assert args.verbose is False
    assert args.config is None


def test_cli_accepts_verbose_config_and_log_file() -> None:
    args = _build_parser().parse_args(["ws", "-v", "--config", "ci.yml", "--log-file", "cov.log"])

    assert args.path == "ws"
    assert args.verbose is True
    assert args.config == Path("ci.yml")
    assert args.log_file == Path("cov.log")


def test_main_exits_zero_when_not_opted_in(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("RUN_KCOV", raising=False)

    assert main([str(tmp_path)]) == 0
    assert not (tmp_path / "target").exists()


def test_unparseable_upload_flag_does_not_override_declined_gate(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("RUN_KCOV", raising=False)
    monkeypatch.setenv("COVERALLS_PARALLEL", "on")

    assert main([str(tmp_path)]) == 0


def test_main_reports_invalid_configuration(tmp_path: Path) -> None:
    (tmp_path / ".covpipe.yml").write_text("modules: 12\n", encoding="utf-8")

    assert main([str(tmp_path)]) == 1


def test_main_writes_log_file(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("RUN_KCOV", raising=False)
    log_file = tmp_path / "logs" / "covpipe.log"

    main([str(tmp_path), "--log-file", str(log_file)])

    assert "Skipping coverage" in log_file.read_text(encoding="utf-8")


@pytest.mark.parametrize("exit_code", [0, 1])
def test_main_returns_pipeline_exit_code(tmp_path: Path, monkeypatch, exit_code: int) -> None:
    class StubPipeline:
        def __init__(self, config) -> None:
            self.config = config

        def run(self) -> PipelineResult:
            return PipelineResult(exit_code=exit_code, summary=RunSummary())

    monkeypatch.setattr(cli, "Pipeline", StubPipeline)

    assert main([str(tmp_path)]) == exit_code


def test_main_maps_interrupt_to_130(tmp_path: Path, monkeypatch) -> None:
    class InterruptedPipeline:
        def __init__(self, config) -> None:
            pass

        def run(self) -> PipelineResult:
            raise KeyboardInterrupt

    monkeypatch.setattr(cli, "Pipeline", InterruptedPipeline)

    assert main([str(tmp_path)]) == cli.EXIT_INTERRUPTED


def test_sigterm_is_treated_as_interrupt(tmp_path: Path, monkeypatch) -> None:
    class TerminatedPipeline:
        def __init__(self, config) -> None:
            pass

        def run(self) -> PipelineResult:
            os.kill(os.getpid(), signal.SIGTERM)
            time.sleep(5)
            raise AssertionError("SIGTERM was not delivered as an interrupt")

    previous = signal.getsignal(signal.SIGTERM)
    monkeypatch.setattr(cli, "Pipeline", TerminatedPipeline)

    assert main([str(tmp_path)]) == cli.EXIT_INTERRUPTED
    assert signal.getsignal(signal.SIGTERM) == previous
