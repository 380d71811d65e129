"""Subprocess execution with timeouts and interrupt forwarding."""

from __future__ import annotations

import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional

from .logging import get_logger

_TERMINATE_GRACE_SECONDS = 10.0
_DRAIN_SECONDS = 5.0

logger = get_logger("process")


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of one child process."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def describe(self) -> str:
        """Return a short human readable reason for a failed command."""
        if self.timed_out:
            return "timed out"
        detail = self.stderr.strip().splitlines()[-1:] if self.stderr else []
        suffix = f": {detail[0]}" if detail else ""
        return f"exit code {self.returncode}{suffix}"


CommandRunner = Callable[..., CommandResult]


def run_command(
    args: Iterable[str | Path],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: Optional[float] = None,
    capture_output: bool = False,
) -> CommandResult:
    """Run a child process to completion.

    A non-zero exit is reported through the result rather than raised. The
    child leads its own process group; when ``timeout`` elapses the whole
    group is killed and the result is flagged as ``timed_out``. A
    ``KeyboardInterrupt`` terminates the group before it is re-raised so the
    caller can abort. ``FileNotFoundError`` propagates when the executable
    does not exist.
    """
    argv = tuple(str(arg) for arg in args)
    logger.debug("$ %s", " ".join(argv))
    pipe = subprocess.PIPE if capture_output else None
    process = subprocess.Popen(
        list(argv),
        cwd=str(cwd) if cwd is not None else None,
        env=dict(env) if env is not None else None,
        stdout=pipe,
        stderr=pipe,
        text=True,
        start_new_session=True,
    )
    try:
        stdout, stderr = process.communicate(timeout=timeout or None)
    except subprocess.TimeoutExpired:
        logger.debug("Command timed out after %ss: %s", timeout, argv[0])
        _signal_group(process, signal.SIGKILL)
        stdout, stderr = _drain(process)
        return CommandResult(
            args=argv,
            returncode=process.returncode,
            stdout=stdout,
            stderr=stderr,
            timed_out=True,
        )
    except KeyboardInterrupt:
        _terminate(process)
        raise
    return CommandResult(
        args=argv,
        returncode=process.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
    )


def _signal_group(process: subprocess.Popen, signum: int) -> None:
    try:
        os.killpg(process.pid, signum)
    except ProcessLookupError:
        pass


def _drain(process: subprocess.Popen) -> tuple[str, str]:
    # A child that left the group can still hold our pipes open.
    try:
        stdout, stderr = process.communicate(timeout=_DRAIN_SECONDS)
    except subprocess.TimeoutExpired:
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()
        process.wait()
        return "", ""
    return stdout or "", stderr or ""


def _terminate(process: subprocess.Popen) -> None:
    if process.poll() is not None:
        _signal_group(process, signal.SIGKILL)
        return
    logger.warning("Interrupted; terminating child process group %s", process.pid)
    _signal_group(process, signal.SIGTERM)
    try:
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        _signal_group(process, signal.SIGKILL)
        process.wait()
    else:
        _signal_group(process, signal.SIGKILL)


__all__ = ["CommandResult", "CommandRunner", "run_command"]
