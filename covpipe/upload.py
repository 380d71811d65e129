"""Hands coverage reports to the Codecov uploader."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from .config import ENV_PARALLEL_UPLOAD
from .errors import UploadError
from .logging import get_logger
from .process import CommandRunner, run_command


class CodecovUploader:
    """Submits report directories through an external uploader CLI."""

    def __init__(
        self,
        command: Sequence[str] = ("codecov",),
        *,
        parallel: bool = True,
        workdir: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: Optional[float] = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self.command = list(command)
        self.parallel = parallel
        self.workdir = workdir
        self.env = env
        self.timeout = timeout
        self._runner = runner or run_command
        self.logger = get_logger("upload")

    def command_for(self, locations: Sequence[Path]) -> List[str]:
        args = list(self.command)
        for location in locations:
            args.extend(["--dir", str(location)])
        return args

    def upload(self, locations: Sequence[Path]) -> None:
        """Submit ``locations``; raises :class:`UploadError` on any failure."""
        env = dict(os.environ if self.env is None else self.env)
        env[ENV_PARALLEL_UPLOAD] = "true" if self.parallel else "false"
        try:
            result = self._runner(
                self.command_for(locations),
                cwd=self.workdir,
                env=env,
                timeout=self.timeout,
                capture_output=True,
            )
        except OSError as exc:
            raise UploadError(f"unable to start uploader '{self.command[0]}': {exc}") from exc
        if not result.ok:
            raise UploadError(f"uploader failed with {result.describe()}")
        self.logger.debug("Uploader output:\n%s", result.stdout.strip())


__all__ = ["CodecovUploader"]
