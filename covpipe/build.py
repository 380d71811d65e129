"""Compiles the test binaries of every workspace module."""

from __future__ import annotations

from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from .errors import BuildError
from .logging import get_logger
from .models import Module
from .process import CommandRunner, run_command


class ModuleBuilder:
    """Builds test executables module by module, stopping at the first failure."""

    def __init__(
        self,
        *,
        workdir: Path,
        target_dir: Path | None = None,
        cargo: str = "cargo",
        env: Mapping[str, str] | None = None,
        timeout: Optional[float] = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self.workdir = workdir
        self.target_dir = target_dir
        self.cargo = cargo
        self.env = env
        self.timeout = timeout
        self._runner = runner or run_command
        self.logger = get_logger("build")

    def command_for(self, module: Module) -> List[str]:
        args = [self.cargo, "build", "--tests", "--manifest-path", str(module.manifest_path)]
        if module.all_features:
            args.append("--all-features")
        if self.target_dir is not None:
            args.extend(["--target-dir", str(self.target_dir)])
        return args

    def build_tests(self, modules: Sequence[Module]) -> List[Module]:
        """Build every module in order and return the modules that were built.

        Raises :class:`BuildError` for the first module that fails; later
        modules are not attempted.
        """
        built: List[Module] = []
        for index, module in enumerate(modules, start=1):
            self.logger.info("----> building tests for %s (%d/%d)", module.name, index, len(modules))
            try:
                result = self._runner(
                    self.command_for(module),
                    cwd=self.workdir,
                    env=self.env,
                    timeout=self.timeout,
                )
            except OSError as exc:
                raise BuildError(module.name, str(exc)) from exc
            if not result.ok:
                raise BuildError(module.name, result.describe())
            built.append(module)
        return built


__all__ = ["ModuleBuilder"]
