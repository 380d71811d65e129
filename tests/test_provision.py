"""Tests for the kcov provisioner."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path

import pytest

from covpipe.config import ToolConfig
from covpipe.errors import ProvisionError
from covpipe.provision import ToolProvisioner
from tests._fixtures.workspace_builder import FakeDownloader, ScriptedRunner


def test_provisioning_runs_every_step_from_a_clean_slate(tmp_path: Path, scripted_runner: ScriptedRunner) -> None:
    stale = tmp_path / "kcov-master" / "build"
    stale.mkdir(parents=True)
    (stale / "leftover.o").write_text("", encoding="utf-8")
    (tmp_path / "master.tar.gz.1").write_text("partial", encoding="utf-8")
    downloader = FakeDownloader()
    provisioner = ToolProvisioner(
        ToolConfig(),
        workdir=tmp_path,
        runner=scripted_runner,
        downloader=downloader,
        which=lambda name: None,
    )

    executable = provisioner.ensure_installed()

    assert executable == "kcov"
    assert downloader.calls == [(ToolConfig().source_url, tmp_path / "master.tar.gz")]
    assert not (tmp_path / "master.tar.gz.1").exists()
    assert not (tmp_path / "kcov-master" / "build" / "leftover.o").exists()
    assert (tmp_path / "kcov-master" / "CMakeLists.txt").exists()

    commands = [call["args"] for call in scripted_runner.calls]
    assert commands == [
        ["sudo", "apt-get", "install", "-y", "cmake", "libcurl4-openssl-dev", "libelf-dev", "libdw-dev"],
        ["cmake", ".."],
        ["make"],
        ["sudo", "make", "install"],
    ]
    assert scripted_runner.calls[1]["cwd"] == tmp_path / "kcov-master" / "build"


def test_install_dir_sets_prefix_and_returns_installed_binary(tmp_path: Path, scripted_runner: ScriptedRunner) -> None:
    install_dir = tmp_path / "opt" / "kcov"
    (install_dir / "bin").mkdir(parents=True)
    (install_dir / "bin" / "kcov").write_text("", encoding="utf-8")
    tool = ToolConfig(packages=[], install_command=["make", "install"])
    provisioner = ToolProvisioner(
        tool,
        workdir=tmp_path,
        runner=scripted_runner,
        downloader=FakeDownloader(top_level="kcov-41"),
        which=lambda name: None,
    )

    executable = provisioner.ensure_installed("https://example.invalid/v41.tar.gz", install_dir)

    assert executable == str(install_dir / "bin" / "kcov")
    assert (tmp_path / "kcov-master" / "CMakeLists.txt").exists()
    commands = [call["args"] for call in scripted_runner.calls]
    assert commands[0] == ["cmake", "..", f"-DCMAKE_INSTALL_PREFIX={install_dir}"]
    assert commands[-1] == ["make", "install"]


def test_skip_if_installed_avoids_rebuilding(tmp_path: Path, scripted_runner: ScriptedRunner) -> None:
    downloader = FakeDownloader()
    provisioner = ToolProvisioner(
        ToolConfig(skip_if_installed=True),
        workdir=tmp_path,
        runner=scripted_runner,
        downloader=downloader,
        which=lambda name: "/usr/local/bin/kcov",
    )

    assert provisioner.ensure_installed() == "/usr/local/bin/kcov"
    assert downloader.calls == []
    assert scripted_runner.calls == []


@pytest.mark.parametrize("failing_step", ["cmake", "make"])
def test_failed_step_is_fatal(tmp_path: Path, failing_step: str) -> None:
    runner = ScriptedRunner([(lambda args: args[0] == failing_step, 2)])
    provisioner = ToolProvisioner(
        ToolConfig(packages=[]),
        workdir=tmp_path,
        runner=runner,
        downloader=FakeDownloader(),
        which=lambda name: None,
    )

    with pytest.raises(ProvisionError):
        provisioner.ensure_installed()

    assert runner.calls[-1]["args"][0] == failing_step


def test_download_failure_is_fatal(tmp_path: Path, scripted_runner: ScriptedRunner) -> None:
    def downloader(url, destination, timeout):
        raise OSError("HTTP 404 fetching archive")

    provisioner = ToolProvisioner(
        ToolConfig(packages=[]),
        workdir=tmp_path,
        runner=scripted_runner,
        downloader=downloader,
        which=lambda name: None,
    )

    with pytest.raises(ProvisionError) as excinfo:
        provisioner.ensure_installed()

    assert excinfo.value.step == "download"
    assert scripted_runner.calls == []


def test_corrupt_archive_is_fatal(tmp_path: Path, scripted_runner: ScriptedRunner) -> None:
    def downloader(url, destination, timeout):
        destination.write_bytes(b"not a tarball")

    provisioner = ToolProvisioner(
        ToolConfig(packages=[]),
        workdir=tmp_path,
        runner=scripted_runner,
        downloader=downloader,
        which=lambda name: None,
    )

    with pytest.raises(ProvisionError) as excinfo:
        provisioner.ensure_installed()

    assert excinfo.value.step == "unpack"


def test_archive_escaping_the_staging_area_is_rejected(tmp_path: Path, scripted_runner: ScriptedRunner) -> None:
    def downloader(url, destination, timeout):
        payload = b"owned\n"
        member = tarfile.TarInfo("../escaped.txt")
        member.size = len(payload)
        with tarfile.open(destination, "w:gz") as archive:
            archive.addfile(member, io.BytesIO(payload))

    workdir = tmp_path / "ws"
    workdir.mkdir()
    provisioner = ToolProvisioner(
        ToolConfig(packages=[]),
        workdir=workdir,
        runner=scripted_runner,
        downloader=downloader,
        which=lambda name: None,
    )

    with pytest.raises(ProvisionError) as excinfo:
        provisioner.ensure_installed()

    assert excinfo.value.step == "unpack"
    assert not (tmp_path / "escaped.txt").exists()
    assert scripted_runner.calls == []
