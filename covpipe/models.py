"""Core data models shared across covpipe stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import List, Optional, Sequence, Tuple

REPORT_PREFIX = "kcov-"


@dataclass(frozen=True)
class Module:
    """An independently buildable sub-project of the workspace."""

    name: str
    manifest_path: Path
    all_features: bool = True

    @classmethod
    def from_name(cls, name: str) -> "Module":
        return cls(name=name, manifest_path=Path(name) / "Cargo.toml")


@dataclass(frozen=True)
class PathPolicy:
    """Include/exclude source path prefixes shared by every coverage run.

    Exclude entries win over include entries sharing a prefix. The policy is
    frozen so a single pipeline execution measures every binary the same way.
    """

    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()

    @classmethod
    def from_lists(cls, include: Sequence[str], exclude: Sequence[str]) -> "PathPolicy":
        return cls(
            include=tuple(_normalise_prefix(item) for item in include if item),
            exclude=tuple(_normalise_prefix(item) for item in exclude if item),
        )

    def covers(self, path: str) -> bool:
        """Return True when coverage for ``path`` is measured under this policy."""
        candidate = _normalise_prefix(path)
        if any(_has_prefix(candidate, prefix) for prefix in self.exclude):
            return False
        if not self.include:
            return True
        return any(_has_prefix(candidate, prefix) for prefix in self.include)

    def to_kcov_args(self) -> List[str]:
        """Render the policy as kcov command-line options."""
        args: List[str] = []
        if self.include:
            args.append(f"--include-path={','.join(self.include)}")
        if self.exclude:
            args.append(f"--exclude-path={','.join(self.exclude)}")
        return args


@dataclass(frozen=True)
class TestBinary:
    """A compiled test executable discovered in the build output."""

    __test__ = False  # keep pytest from collecting this class

    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def report_id(self) -> str:
        return f"{REPORT_PREFIX}{self.path.name}"

    @property
    def key(self) -> Path:
        return self.path.resolve()


@dataclass(frozen=True)
class CoverageReport:
    """Output directory written by one successful instrumentation run."""

    binary: TestBinary
    output_dir: Path


@dataclass(frozen=True)
class RunFailure:
    """A binary whose instrumentation run did not succeed."""

    binary: TestBinary
    reason: str


@dataclass
class RunSummary:
    """Aggregate outcome of the instrumentation stage."""

    instrumented: int = 0
    reports: List[CoverageReport] = field(default_factory=list)
    failures: List[RunFailure] = field(default_factory=list)
    success: bool = True

    @property
    def attempted(self) -> int:
        return self.instrumented + len(self.failures)

    def record_success(self, report: CoverageReport) -> None:
        self.instrumented += 1
        self.reports.append(report)

    def record_failure(self, binary: TestBinary, reason: str) -> None:
        self.failures.append(RunFailure(binary=binary, reason=reason))


@dataclass(frozen=True)
class PipelineResult:
    """Final outcome handed back to the CLI."""

    exit_code: int
    summary: RunSummary
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


def _normalise_prefix(value: str) -> str:
    text = value.strip().replace("\\", "/")
    while text.startswith("./"):
        text = text[2:]
    if text in {"", "."}:
        return ""
    return str(PurePosixPath(text))


def _has_prefix(path: str, prefix: str) -> bool:
    if not prefix:
        return True
    # kcov matches raw string prefixes, so "proto/src/error" also covers "proto/src/error.rs".
    return path.startswith(prefix)


__all__ = [
    "CoverageReport",
    "Module",
    "PathPolicy",
    "PipelineResult",
    "RunFailure",
    "RunSummary",
    "TestBinary",
]
