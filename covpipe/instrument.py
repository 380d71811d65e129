"""Runs each discovered test binary under kcov."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence, Set

from .errors import RunError
from .logging import get_logger
from .models import CoverageReport, PathPolicy, RunSummary, TestBinary
from .process import CommandRunner, run_command


class InstrumentationRunner:
    """Invokes the instrumentation tool once per test binary."""

    def __init__(
        self,
        *,
        executable: str = "kcov",
        global_exclude: str | None = "/.cargo",
        test_args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        workdir: Path | None = None,
        timeout: Optional[float] = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self.executable = executable
        self.global_exclude = global_exclude
        self.test_args = list(test_args)
        self.env = env
        self.workdir = workdir
        self.timeout = timeout
        self._runner = runner or run_command
        self._started: Set[Path] = set()
        self.logger = get_logger("runner")

    def command_for(self, binary: TestBinary, policy: PathPolicy, output_dir: Path) -> List[str]:
        args = [self.executable]
        if self.global_exclude:
            args.append(f"--exclude-pattern={self.global_exclude}")
        args.extend(policy.to_kcov_args())
        args.append(str(output_dir))
        args.append(str(binary.path))
        args.extend(self.test_args)
        return args

    def run_with_coverage(
        self, binary: TestBinary, policy: PathPolicy, output_root: Path
    ) -> CoverageReport:
        """Instrument one binary and return its report, or raise :class:`RunError`."""
        if binary.key in self._started:
            raise RunError(binary.path, "already instrumented in this run")
        self._started.add(binary.key)

        output_dir = output_root / binary.report_id
        self.logger.info("----> executing kcov on %s", binary.path)
        try:
            output_root.mkdir(parents=True, exist_ok=True)
            result = self._runner(
                self.command_for(binary, policy, output_dir),
                cwd=self.workdir,
                env=self.env,
                timeout=self.timeout,
            )
        except OSError as exc:
            raise RunError(binary.path, str(exc)) from exc
        if not result.ok:
            raise RunError(binary.path, result.describe())
        return CoverageReport(binary=binary, output_dir=output_dir)

    def run_all(
        self,
        binaries: Iterable[TestBinary],
        policy: PathPolicy,
        output_root: Path,
        summary: RunSummary | None = None,
    ) -> RunSummary:
        """Instrument every binary, tolerating individual failures."""
        summary = summary if summary is not None else RunSummary()
        for binary in binaries:
            try:
                report = self.run_with_coverage(binary, policy, output_root)
            except RunError as exc:
                self.logger.error("----> coverage failed for %s: %s", binary.name, exc.reason)
                summary.record_failure(binary, exc.reason)
                continue
            summary.record_success(report)
            self.logger.info("----> coverage recorded for %s in %s", binary.name, report.output_dir)
        return summary


__all__ = ["InstrumentationRunner"]
