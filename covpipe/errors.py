"""Exception taxonomy for pipeline stages."""

from __future__ import annotations

from pathlib import Path


class PipelineError(RuntimeError):
    """Base class for failures that abort the whole pipeline."""


class ProvisionError(PipelineError):
    """Raised when the instrumentation tool cannot be fetched, built or installed."""

    def __init__(self, step: str, reason: str) -> None:
        super().__init__(f"provisioning step '{step}' failed: {reason}")
        self.step = step
        self.reason = reason


class BuildError(PipelineError):
    """Raised when a module's test binaries fail to compile."""

    def __init__(self, module: str, reason: str) -> None:
        super().__init__(f"build of module '{module}' failed: {reason}")
        self.module = module
        self.reason = reason


class RunError(RuntimeError):
    """Raised for a failed instrumentation run; never fatal to the pipeline."""

    def __init__(self, binary: Path, reason: str) -> None:
        super().__init__(f"coverage run of {binary.name} failed: {reason}")
        self.binary = binary
        self.reason = reason


class UploadError(RuntimeError):
    """Raised when the uploader could not submit the reports."""


__all__ = [
    "BuildError",
    "PipelineError",
    "ProvisionError",
    "RunError",
    "UploadError",
]
