"""TOML-based fleet configuration.

Loads ~/.sshmesh/defaults.toml (global) and sshmesh.toml (project),
merges them, and resolves the ``[fleet]`` and ``[logging]`` tables into
a Settings instance. CLI flags are applied on top as overrides.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from sshmesh import constants
from sshmesh.core.exceptions import ConfigurationError
from sshmesh.logging import LogConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".sshmesh" / "defaults.toml"
PROJECT_CONFIG_NAME = "sshmesh.toml"


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved fleet settings.

    Attributes:
        binary: Container runtime CLI (docker, podman, nerdctl).
        workdir: Directory holding the keypair, image descriptor and
            transient harvest artifact.
        known_hosts_path: The operator's SSH trust store.
        max_workers: Upper bound on concurrent per-node tasks.
        command_timeout: Bound on every runtime command, in seconds.
        ready_timeout: How long a node may take to answer with an SSH banner.
        settle_delay: Extra fixed wait after readiness, for slow hosts.
    """

    binary: str = "docker"
    image_name: str = constants.IMAGE_NAME
    base_image: str = constants.BASE_IMAGE
    network_name: str = constants.NETWORK_NAME
    subnet_prefix: str = constants.SUBNET_PREFIX
    base_port: int = constants.BASE_PORT
    node_prefix: str = constants.NODE_PREFIX
    ssh_user: str = constants.SSH_USER
    key_name: str = constants.KEY_NAME
    key_bits: int = constants.KEY_BITS
    key_comment: str = constants.KEY_COMMENT
    host_key_path: str = constants.HOST_KEY_PATH
    workdir: Path = Path(".")
    known_hosts_path: Path = constants.OPERATOR_KNOWN_HOSTS
    max_workers: int = constants.DEFAULT_MAX_WORKERS
    command_timeout: float = constants.DEFAULT_COMMAND_TIMEOUT
    build_timeout: float = constants.DEFAULT_BUILD_TIMEOUT
    ready_timeout: float = constants.DEFAULT_READY_TIMEOUT
    ready_interval: float = constants.DEFAULT_READY_INTERVAL
    ready_host: str = "127.0.0.1"
    settle_delay: float = 0.0

    @property
    def private_key_path(self) -> Path:
        return self.workdir / self.key_name

    @property
    def public_key_path(self) -> Path:
        return self.workdir / f"{self.key_name}.pub"

    @property
    def descriptor_path(self) -> Path:
        return self.workdir / constants.DESCRIPTOR_NAME

    @property
    def harvest_path(self) -> Path:
        return self.workdir / constants.HARVEST_ARTIFACT_NAME

    @property
    def backup_path(self) -> Path:
        return self.known_hosts_path.with_name(
            self.known_hosts_path.name + constants.BACKUP_SUFFIX,
        )

    @property
    def ssh_home(self) -> str:
        return f"/home/{self.ssh_user}/.ssh"


_PATH_FIELDS = frozenset({"workdir", "known_hosts_path"})


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    config_path: Path | None = None,
) -> RawConfig:
    """Merge global and project configuration. An explicit ``config_path``
    replaces the project file and must exist."""
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    if config_path is not None:
        if not config_path.is_file():
            raise ConfigurationError(f"Config file not found: {config_path}")
        project_cfg = _read_toml(config_path)
    else:
        project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("fleet", {})
    merged.setdefault("logging", {})
    return merged


def _build[T](cls: type[T], raw: RawConfig, table: str) -> T:
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in [{table}]: {', '.join(sorted(unknown))}. "
            f"Valid: {', '.join(sorted(known))}"
        )
    try:
        return cls(**raw)
    except TypeError as e:
        raise ConfigurationError(f"Invalid [{table}] table: {e}") from e


def resolve_settings(
    raw: RawConfig,
    **overrides: Any,
) -> Settings:
    """Build Settings from merged config, then apply non-None overrides."""
    fleet = dict(raw.get("fleet", {}))
    for key in _PATH_FIELDS & fleet.keys():
        fleet[key] = Path(fleet[key]).expanduser()
    settings = _build(Settings, fleet, "fleet")

    changes = {k: v for k, v in overrides.items() if v is not None}
    if changes:
        settings = replace(settings, **changes)

    if settings.max_workers < 1:
        raise ConfigurationError(f"max_workers must be >= 1, got {settings.max_workers}")
    if settings.command_timeout <= 0 or settings.ready_timeout <= 0:
        raise ConfigurationError("Timeouts must be positive")
    return settings


def resolve_logging(raw: RawConfig, **overrides: Any) -> LogConfig:
    config = _build(LogConfig, dict(raw.get("logging", {})), "logging")
    changes = {k: v for k, v in overrides.items() if v is not None}
    return replace(config, **changes) if changes else config
