"""Pipeline orchestration: gate, provision, build, discover, instrument, report."""

from __future__ import annotations

import time
from typing import Callable, Optional

from .build import ModuleBuilder
from .config import PipelineConfig
from .discovery import discover_test_binaries
from .errors import PipelineError
from .gate import UNSUPPORTED_PLATFORMS, GateDecision, compiler_version, current_platform, evaluate
from .instrument import InstrumentationRunner
from .logging import get_logger
from .models import PipelineResult, RunSummary
from .process import CommandRunner, run_command
from .provision import Downloader, ToolProvisioner
from .report import ReportAggregator
from .upload import CodecovUploader

EXIT_OK = 0
EXIT_FAILURE = 1


class Pipeline:
    """Runs the coverage stages in order and turns their outcome into an exit code."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        runner: CommandRunner | None = None,
        downloader: Downloader | None = None,
        platform: str | None = None,
        compiler: Callable[[], str] | None = None,
        provisioner: ToolProvisioner | None = None,
        builder: ModuleBuilder | None = None,
        instrumenter: InstrumentationRunner | None = None,
        aggregator: ReportAggregator | None = None,
    ) -> None:
        self.config = config
        self._runner = runner or run_command
        self._platform = platform
        self._compiler = compiler or (lambda: compiler_version(self._runner))
        self._child_env = config.child_env()
        self.provisioner = provisioner or ToolProvisioner(
            config.tool,
            workdir=config.root,
            runner=self._runner,
            downloader=downloader,
            timeout=config.timeouts.provision,
        )
        self.builder = builder or ModuleBuilder(
            workdir=config.root,
            target_dir=config.resolve(config.target_dir),
            env=self._child_env,
            timeout=config.timeouts.build,
            runner=self._runner,
        )
        self._instrumenter = instrumenter
        self.aggregator = aggregator or ReportAggregator(
            config.resolve(config.output_root),
            self._make_uploader(),
        )
        self.logger = get_logger("orchestrator")

    def gate(self) -> GateDecision:
        platform = self._platform or current_platform()
        # Skip the compiler probe when the platform already rules coverage out.
        version = "" if platform in UNSUPPORTED_PLATFORMS else self._compiler()
        opt_in = "1" if self.config.enabled else None
        return evaluate(platform, version, opt_in)

    def run(self) -> PipelineResult:
        """Execute the pipeline once.

        Fatal stages (provisioning, module builds) stop the pipeline with a
        non-zero exit code. Failed coverage runs and uploads are logged and do
        not affect the exit code. ``KeyboardInterrupt`` propagates after the
        running child has been terminated.
        """
        summary = RunSummary()
        decision = self.gate()
        if not decision.run:
            self.logger.info("Skipping coverage: %s", decision.reason)
            return PipelineResult(exit_code=EXIT_OK, summary=summary, skipped_reason=decision.reason)

        config = self.config
        self.logger.info("Starting coverage run in %s", config.root)
        try:
            executable = self.provisioner.ensure_installed(
                config.tool.source_url, config.tool.install_dir
            )
            build_started = time.time()
            self.builder.build_tests(config.modules)
        except PipelineError as exc:
            summary.success = False
            self.logger.error("%s", exc)
            self.logger.info("----> ran %d test(s)", summary.instrumented)
            return PipelineResult(exit_code=EXIT_FAILURE, summary=summary)

        newer_than: Optional[float] = build_started if config.discovery.skip_stale else None
        binaries = discover_test_binaries(
            config.discovery_dir(),
            config.discovery.patterns,
            newer_than=newer_than,
        )

        instrumenter = self._instrumenter or self._make_instrumenter(executable)
        instrumenter.run_all(binaries, config.policy, config.resolve(config.output_root), summary)

        self.aggregator.finalize(summary.reports, summary)
        return PipelineResult(exit_code=EXIT_OK, summary=summary)

    # ------------------------------------------------------------------
    # Helpers

    def _make_instrumenter(self, executable: str) -> InstrumentationRunner:
        return InstrumentationRunner(
            executable=executable,
            global_exclude=self.config.tool.global_exclude or None,
            test_args=self.config.test_args,
            env=self._child_env,
            workdir=self.config.root,
            timeout=self.config.timeouts.run,
            runner=self._runner,
        )

    def _make_uploader(self) -> CodecovUploader | None:
        upload = self.config.upload
        if not upload.enabled:
            return None
        return CodecovUploader(
            upload.command,
            parallel=upload.parallel,
            workdir=self.config.root,
            env=self._child_env,
            timeout=upload.timeout,
            runner=self._runner,
        )


__all__ = ["EXIT_FAILURE", "EXIT_OK", "Pipeline"]
