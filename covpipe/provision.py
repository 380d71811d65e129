"""Fetches, builds and installs the kcov instrumentation tool."""

from __future__ import annotations

import shutil
import tarfile
from pathlib import Path
from typing import Callable, List, Optional, Sequence
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

from .config import ToolConfig
from .errors import ProvisionError
from .logging import get_logger
from .process import CommandResult, CommandRunner, run_command

Downloader = Callable[[str, Path, Optional[float]], None]


class ToolProvisioner:
    """Installs kcov from a source archive, always starting from a clean slate."""

    def __init__(
        self,
        tool: ToolConfig,
        *,
        workdir: Path,
        runner: CommandRunner | None = None,
        downloader: Downloader | None = None,
        which: Callable[[str], Optional[str]] | None = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.tool = tool
        self.workdir = workdir
        self._runner = runner or run_command
        self._download = downloader or self._default_downloader
        self._which = which or shutil.which
        self.timeout = timeout
        self.logger = get_logger("provision")

    @property
    def staging_dir(self) -> Path:
        return self._anchor(self.tool.staging_dir)

    @property
    def archive_path(self) -> Path:
        return self.workdir / self.tool.archive_name

    def ensure_installed(self, source_url: str | None = None, install_dir: Path | None = None) -> str:
        """Make the instrumentation tool available and return the executable to invoke."""
        source_url = source_url or self.tool.source_url
        install_dir = install_dir if install_dir is not None else self.tool.install_dir
        if install_dir is not None:
            install_dir = self._anchor(install_dir)

        if self.tool.skip_if_installed:
            existing = self._installed_executable(install_dir)
            if existing:
                self.logger.info("%s already installed at %s; skipping provisioning", self.tool.executable, existing)
                return existing

        self._remove_stale()
        self._install_packages()

        self.logger.info("----> downloading %s", source_url)
        try:
            self._download(source_url, self.archive_path, self.timeout)
        except (OSError, ValueError) as exc:
            raise ProvisionError("download", str(exc)) from exc

        source_dir = self._unpack()
        build_dir = source_dir / "build"
        build_dir.mkdir(parents=True, exist_ok=True)

        configure = ["cmake", ".."]
        if install_dir is not None:
            configure.append(f"-DCMAKE_INSTALL_PREFIX={install_dir}")
        self._step("configure", configure, cwd=build_dir)
        self._step("compile", ["make"], cwd=build_dir)

        install = list(self.tool.install_command) or ["make", "install"]
        self._step("install", install, cwd=build_dir)

        executable = self._installed_executable(install_dir) or self.tool.executable
        self.logger.info("Installed %s", executable)
        return executable

    # ------------------------------------------------------------------
    # Steps

    def _remove_stale(self) -> None:
        try:
            if self.staging_dir.exists():
                self.logger.debug("Removing stale checkout %s", self.staging_dir)
                shutil.rmtree(self.staging_dir)
            for stale in self.workdir.glob(f"{self.tool.archive_name}*"):
                self.logger.debug("Removing stale archive %s", stale)
                stale.unlink()
        except OSError as exc:
            raise ProvisionError("clean", str(exc)) from exc

    def _install_packages(self) -> None:
        if not self.tool.packages:
            return
        if not self.tool.package_command:
            raise ProvisionError("packages", "packages configured without a package_command")
        self._step("packages", [*self.tool.package_command, *self.tool.packages], cwd=self.workdir)

    def _unpack(self) -> Path:
        self.staging_dir.parent.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(self.archive_path, "r:*") as archive:
                roots = _top_level_entries(archive.getnames())
                archive.extractall(self.staging_dir.parent, filter="data")
        except (OSError, tarfile.TarError) as exc:
            raise ProvisionError("unpack", str(exc)) from exc

        if len(roots) == 1 and roots[0] != self.staging_dir.name:
            extracted = self.staging_dir.parent / roots[0]
            if extracted.is_dir():
                extracted.rename(self.staging_dir)
        if not self.staging_dir.is_dir():
            raise ProvisionError("unpack", f"archive did not produce {self.staging_dir.name}/")
        return self.staging_dir

    def _step(self, name: str, args: Sequence[str], *, cwd: Path) -> CommandResult:
        self.logger.info("----> %s: %s", name, " ".join(args))
        try:
            result = self._runner(args, cwd=cwd, timeout=self.timeout)
        except OSError as exc:
            raise ProvisionError(name, str(exc)) from exc
        if not result.ok:
            raise ProvisionError(name, result.describe())
        return result

    # ------------------------------------------------------------------
    # Helpers

    def _anchor(self, path: Path) -> Path:
        return path if path.is_absolute() else self.workdir / path

    def _installed_executable(self, install_dir: Path | None) -> Optional[str]:
        if install_dir is not None:
            candidate = install_dir / "bin" / self.tool.executable
            if candidate.is_file():
                return str(candidate)
        return self._which(self.tool.executable)

    @staticmethod
    def _default_downloader(url: str, destination: Path, timeout: Optional[float]) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            with urlopen(url, timeout=timeout or 300.0) as response, destination.open("wb") as handle:
                shutil.copyfileobj(response, handle)
        except HTTPError as exc:
            raise OSError(f"HTTP {exc.code} fetching {url}") from exc
        except URLError as exc:
            raise OSError(f"failed to fetch {url}: {exc.reason}") from exc


def _top_level_entries(names: Sequence[str]) -> List[str]:
    roots: List[str] = []
    for name in names:
        relative = name[2:] if name.startswith("./") else name
        head = relative.split("/", 1)[0]
        if head and head not in roots:
            roots.append(head)
    return roots


__all__ = ["ToolProvisioner"]
