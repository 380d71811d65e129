"""Tests for the Codecov uploader adapter."""

from __future__ import annotations

from pathlib import Path

import pytest

from covpipe.errors import UploadError
from covpipe.process import CommandResult
from covpipe.upload import CodecovUploader


def test_upload_passes_every_report_directory(tmp_path: Path) -> None:
    calls = []

    def runner(args, **kwargs):
        calls.append((list(args), kwargs))
        return CommandResult(args=tuple(args), returncode=0, stdout="uploaded")

    uploader = CodecovUploader(["codecov", "-Z"], parallel=True, env={"PATH": "/bin"}, runner=runner)
    uploader.upload([tmp_path / "kcov-a", tmp_path / "kcov-b"])

    args, kwargs = calls[0]
    assert args == ["codecov", "-Z", "--dir", str(tmp_path / "kcov-a"), "--dir", str(tmp_path / "kcov-b")]
    assert kwargs["env"] == {"PATH": "/bin", "COVERALLS_PARALLEL": "true"}


def test_parallel_mode_can_be_disabled(tmp_path: Path) -> None:
    seen = {}

    def runner(args, **kwargs):
        seen.update(kwargs["env"])
        return CommandResult(args=tuple(args), returncode=0)

    CodecovUploader(parallel=False, env={}, runner=runner).upload([tmp_path])

    assert seen["COVERALLS_PARALLEL"] == "false"


def test_failed_upload_raises_upload_error(tmp_path: Path) -> None:
    def runner(args, **kwargs):
        return CommandResult(args=tuple(args), returncode=2, stderr="network unreachable\n")

    with pytest.raises(UploadError, match="network unreachable"):
        CodecovUploader(env={}, runner=runner).upload([tmp_path])


def test_missing_uploader_raises_upload_error(tmp_path: Path) -> None:
    def runner(args, **kwargs):
        raise FileNotFoundError(args[0])

    with pytest.raises(UploadError, match="codecov"):
        CodecovUploader(env={}, runner=runner).upload([tmp_path])
