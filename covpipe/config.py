"""Configuration loading for covpipe (.covpipe.yml plus environment)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .logging import get_logger
from .models import Module, PathPolicy

CONFIG_FILENAME = ".covpipe.yml"

# Recognised environment variables.
ENV_OPT_IN = "RUN_KCOV"
ENV_SERVER_ROOT = "TDNS_SERVER_SRC_ROOT"
ENV_PARALLEL_UPLOAD = "COVERALLS_PARALLEL"

DEFAULT_MODULES = (
    "proto",
    "client",
    "native-tls",
    "openssl",
    "rustls",
    "resolver",
    "server",
    "integration-tests",
)
DEFAULT_INCLUDE_PATHS = (
    "client/src",
    "native-tls/src",
    "openssl/src",
    "proto/src",
    "resolver/src",
    "rustls/src",
    "server/src",
)
DEFAULT_EXCLUDE_PATHS = (
    "client/src/error",
    "proto/src/error.rs",
    "server/src/error",
    "compatibility-tests/src/lib.rs",
)
DEFAULT_BINARY_PATTERNS = ("trust_dns*-*", "*_tests-*")
DEFAULT_SERVER_ROOT = "./server"

logger = get_logger("config")


class ConfigError(RuntimeError):
    """Raised when the configuration file or environment is invalid."""


@dataclass
class ToolConfig:
    """Where the kcov sources come from and how they are installed."""

    source_url: str = "https://github.com/SimonKagstrom/kcov/archive/master.tar.gz"
    staging_dir: Path = Path("kcov-master")
    archive_name: str = "master.tar.gz"
    install_dir: Optional[Path] = None
    executable: str = "kcov"
    packages: List[str] = field(
        default_factory=lambda: ["cmake", "libcurl4-openssl-dev", "libelf-dev", "libdw-dev"]
    )
    package_command: List[str] = field(
        default_factory=lambda: ["sudo", "apt-get", "install", "-y"]
    )
    install_command: List[str] = field(default_factory=lambda: ["sudo", "make", "install"])
    skip_if_installed: bool = False
    global_exclude: str = "/.cargo"


@dataclass
class DiscoveryConfig:
    """Where compiled test executables land and how they are recognised.

    ``directory`` defaults to the ``debug/deps`` folder of the Cargo target dir.
    """

    directory: Optional[Path] = None
    patterns: List[str] = field(default_factory=lambda: list(DEFAULT_BINARY_PATTERNS))
    skip_stale: bool = False


@dataclass
class TimeoutConfig:
    """Per-subprocess time limits in seconds; ``None`` waits forever."""

    build: Optional[float] = 3600.0
    run: Optional[float] = 1800.0
    provision: Optional[float] = 1800.0


@dataclass
class UploadConfig:
    """Uploader invocation."""

    enabled: bool = True
    command: List[str] = field(default_factory=lambda: ["codecov"])
    timeout: Optional[float] = 600.0
    parallel: bool = True


@dataclass
class PipelineConfig:
    """Every setting of one pipeline execution, validated once at startup."""

    root: Path
    enabled: bool = False
    modules: List[Module] = field(
        default_factory=lambda: [Module.from_name(name) for name in DEFAULT_MODULES]
    )
    policy: PathPolicy = field(
        default_factory=lambda: PathPolicy.from_lists(DEFAULT_INCLUDE_PATHS, DEFAULT_EXCLUDE_PATHS)
    )
    tool: ToolConfig = field(default_factory=ToolConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    target_dir: Path = Path("target")
    output_root: Path = Path("target")
    test_args: List[str] = field(default_factory=list)
    passthrough_env: Dict[str, str] = field(default_factory=dict)

    def resolve(self, path: Path) -> Path:
        """Return ``path`` anchored at the workspace root."""
        return path if path.is_absolute() else self.root / path

    def child_env(self, base: Mapping[str, str] | None = None) -> Dict[str, str]:
        """Return the environment exported to build and test processes."""
        env = dict(os.environ if base is None else base)
        env.update(self.passthrough_env)
        return env

    def discovery_dir(self) -> Path:
        """Return the directory scanned for freshly built test executables."""
        directory = self.discovery.directory or self.target_dir / "debug" / "deps"
        return self.resolve(directory)


def load_config(
    root: Path,
    *,
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> PipelineConfig:
    """Load the pipeline configuration for the workspace at ``root``."""
    root = root.expanduser().resolve()
    env = os.environ if environ is None else environ
    config_file = (config_path or root / CONFIG_FILENAME).expanduser()

    data: Dict[str, Any] = {}
    if config_path is not None and not config_file.exists():
        raise ConfigError(f"Configuration file not found: {config_file}")
    if config_file.exists():
        data = _read_config(config_file)

    config = PipelineConfig(root=root)

    modules_data = data.get("modules")
    if modules_data is not None:
        config.modules = _parse_modules(modules_data)

    paths_data = _as_dict(data.get("paths"), "paths")
    if paths_data:
        include = (
            _as_str_list(paths_data["include"], "paths.include")
            if "include" in paths_data
            else list(DEFAULT_INCLUDE_PATHS)
        )
        exclude = (
            _as_str_list(paths_data["exclude"], "paths.exclude")
            if "exclude" in paths_data
            else list(DEFAULT_EXCLUDE_PATHS)
        )
        config.policy = PathPolicy.from_lists(include, exclude)

    tool_data = _as_dict(data.get("tool"), "tool")
    tool = config.tool
    if tool_data:
        tool.source_url = _as_str(tool_data.get("source_url")) or tool.source_url
        tool.staging_dir = _as_path(tool_data.get("staging_dir")) or tool.staging_dir
        tool.archive_name = _as_str(tool_data.get("archive_name")) or tool.archive_name
        tool.install_dir = _as_path(tool_data.get("install_dir"))
        tool.executable = _as_str(tool_data.get("executable")) or tool.executable
        if "packages" in tool_data:
            tool.packages = _as_str_list(tool_data.get("packages"), "tool.packages")
        if "package_command" in tool_data:
            tool.package_command = _as_str_list(tool_data.get("package_command"), "tool.package_command")
        if "install_command" in tool_data:
            tool.install_command = _as_str_list(tool_data.get("install_command"), "tool.install_command")
        tool.skip_if_installed = bool(_as_bool(tool_data.get("skip_if_installed")))
        if "global_exclude" in tool_data:
            tool.global_exclude = _as_str(tool_data.get("global_exclude")) or ""

    discovery_data = _as_dict(data.get("discovery"), "discovery")
    if discovery_data:
        discovery = config.discovery
        discovery.directory = _as_path(discovery_data.get("directory"))
        if "patterns" in discovery_data:
            discovery.patterns = _as_str_list(discovery_data.get("patterns"), "discovery.patterns")
        discovery.skip_stale = bool(_as_bool(discovery_data.get("skip_stale")))

    timeouts_data = _as_dict(data.get("timeouts"), "timeouts")
    for key in ("build", "run", "provision"):
        if key in timeouts_data:
            setattr(config.timeouts, key, _as_timeout(timeouts_data[key], f"timeouts.{key}"))

    upload_data = _as_dict(data.get("upload"), "upload")
    if upload_data:
        upload = config.upload
        enabled = _as_bool(upload_data.get("enabled"))
        upload.enabled = upload.enabled if enabled is None else enabled
        if "command" in upload_data:
            upload.command = _as_str_list(upload_data.get("command"), "upload.command")
        if "timeout" in upload_data:
            upload.timeout = _as_timeout(upload_data["timeout"], "upload.timeout")

    config.target_dir = _as_path(data.get("target_dir")) or config.target_dir
    config.output_root = _as_path(data.get("output_root")) or config.output_root
    config.test_args = _as_str_list(data.get("test_args"), "test_args")

    _apply_environment(config, env)
    _validate(config)
    return config


def _apply_environment(config: PipelineConfig, env: Mapping[str, str]) -> None:
    config.enabled = bool(env.get(ENV_OPT_IN))
    config.passthrough_env = {
        ENV_SERVER_ROOT: env.get(ENV_SERVER_ROOT) or DEFAULT_SERVER_ROOT,
    }
    parallel = env.get(ENV_PARALLEL_UPLOAD)
    if parallel:
        flag = _as_bool(parallel)
        if flag is None:
            logger.warning(
                "Ignoring %s=%r (expected true or false); keeping %s",
                ENV_PARALLEL_UPLOAD,
                parallel,
                str(config.upload.parallel).lower(),
            )
        else:
            config.upload.parallel = flag


def _validate(config: PipelineConfig) -> None:
    names = [module.name for module in config.modules]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate modules configured: {', '.join(duplicates)}")
    if not config.discovery.patterns:
        raise ConfigError("discovery.patterns must list at least one pattern")
    if not config.tool.executable:
        raise ConfigError("tool.executable must not be empty")
    if config.upload.enabled and not config.upload.command:
        raise ConfigError("upload.command must not be empty when upload is enabled")


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"{path.name} must contain a mapping at the root")
    return loaded


def _parse_modules(value: Any) -> List[Module]:
    if not isinstance(value, list):
        raise ConfigError("modules must be a list")
    modules: List[Module] = []
    for item in value:
        if isinstance(item, str):
            modules.append(Module.from_name(item))
            continue
        if isinstance(item, dict) and _as_str(item.get("name")):
            name = str(item["name"])
            manifest = _as_path(item.get("manifest")) or Path(name) / "Cargo.toml"
            all_features = _as_bool(item.get("all_features"))
            modules.append(
                Module(
                    name=name,
                    manifest_path=manifest,
                    all_features=True if all_features is None else all_features,
                )
            )
            continue
        raise ConfigError(f"Invalid module entry: {item!r}")
    return modules


def _as_dict(value: Any, key: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a mapping")
    return value


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_path(value: Any) -> Optional[Path]:
    text = _as_str(value)
    return Path(text) if text else None


def _as_timeout(value: Any, key: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError(f"{key} must be a number of seconds")
    try:
        seconds = float(value)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number of seconds") from exc
    if seconds < 0:
        raise ConfigError(f"{key} must not be negative")
    return seconds or None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any, key: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    items: List[str] = []
    for item in value:
        text = _as_str(item)
        if text is None:
            raise ConfigError(f"{key} must be a list of strings, got {item!r}")
        items.append(text)
    return items
