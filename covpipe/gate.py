"""Decides whether the coverage pipeline applies to the current environment."""

from __future__ import annotations

import platform as _platform
from dataclasses import dataclass
from typing import Optional

from .logging import get_logger
from .process import CommandRunner, run_command

UNSUPPORTED_PLATFORMS = frozenset({"Darwin"})
PRERELEASE_CHANNELS = ("beta", "nightly")

logger = get_logger("gate")


@dataclass(frozen=True)
class GateDecision:
    """Outcome of the environment gate."""

    run: bool
    reason: str


def should_run(platform: str, compiler_version: str, opt_in: Optional[str]) -> bool:
    """Return True when coverage should be collected in this environment."""
    return evaluate(platform, compiler_version, opt_in).run


def evaluate(platform: str, compiler_version: str, opt_in: Optional[str]) -> GateDecision:
    """Return the gate decision with a reason suitable for the log."""
    if platform in UNSUPPORTED_PLATFORMS:
        return GateDecision(False, f"kcov is not supported on {platform}")
    for channel in PRERELEASE_CHANNELS:
        if channel in compiler_version:
            return GateDecision(False, f"compiler is on the {channel} channel")
    if not opt_in:
        return GateDecision(False, "coverage not requested (RUN_KCOV is unset)")
    return GateDecision(True, "coverage enabled")


def current_platform() -> str:
    return _platform.system()


def compiler_version(runner: CommandRunner = run_command, *, compiler: str = "rustc") -> str:
    """Return ``rustc --version`` output, or an empty string when unavailable."""
    try:
        result = runner([compiler, "--version"], capture_output=True, timeout=60)
    except OSError as exc:
        logger.debug("Unable to query %s version: %s", compiler, exc)
        return ""
    if not result.ok:
        logger.debug("%s --version failed: %s", compiler, result.describe())
        return ""
    return result.stdout.strip()


__all__ = ["GateDecision", "compiler_version", "current_platform", "evaluate", "should_run"]
