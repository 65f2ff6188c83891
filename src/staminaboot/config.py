"""YAML configuration for the launcher and the bootstrap admin.

Example ``config.yml``::

    launcher:
      from: bootstrap:network
      discovery_timeout_ms: 10000
      bind_address: 0.0.0.0
      init_dir: ${HOME}/stamina-init
    admin:
      addons:
        - https://repo.example.org/shell.esa
      overlay: ./overlay
      bind_address: 0.0.0.0
      endpoints:
        - http://192.168.1.10:8080
"""

from __future__ import annotations

import ipaddress
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .discovery import WILDCARD_ADDRESS
from .log import get_logger
from .runtime_paths import config_path

LOGGER = get_logger(__name__)

NETWORK_SOURCE = "bootstrap:network"
DEFAULT_BOOTSTRAP_PACKAGE_URL = "http://localhost:8080/bootstrap.pkg"
_DEFAULT_DISCOVERY_TIMEOUT_MS = 10_000

# ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """Configuration loading or parsing error."""


def _validate_bind_address(name: str, value: object) -> None:
    if not isinstance(value, str):
        raise ValueError(f"`{name}` must be a string.")
    try:
        ipaddress.ip_address(value)
    except ValueError as exc:
        raise ValueError(f"`{name}` is not an IP address: {value!r}") from exc


def _validate_str_list(name: str, value: object) -> None:
    if not isinstance(value, list) or any(not isinstance(item, str) or not item for item in value):
        raise ValueError(f"`{name}` must be a list of non-empty strings.")


@dataclass
class LauncherConfig:
    source: str | None = None
    discovery_timeout_ms: int = _DEFAULT_DISCOVERY_TIMEOUT_MS
    bind_address: str = WILDCARD_ADDRESS
    init_dir: str | None = None

    @property
    def use_network(self) -> bool:
        return self.source == NETWORK_SOURCE

    def validate(self) -> None:
        if self.source is not None and (not isinstance(self.source, str) or not self.source.strip()):
            raise ValueError("`launcher.from` must be a non-empty string.")
        if not isinstance(self.discovery_timeout_ms, int) or isinstance(self.discovery_timeout_ms, bool):
            raise ValueError("`launcher.discovery_timeout_ms` must be an int.")
        if self.discovery_timeout_ms < 1:
            raise ValueError(
                f"`launcher.discovery_timeout_ms` must be positive, got: {self.discovery_timeout_ms}"
            )
        _validate_bind_address("launcher.bind_address", self.bind_address)
        if self.init_dir is not None and not isinstance(self.init_dir, str):
            raise ValueError("`launcher.init_dir` must be a string.")


@dataclass
class AdminConfig:
    addons: list[str] = field(default_factory=list)
    overlay: str | None = None
    bind_address: str = WILDCARD_ADDRESS
    endpoints: list[str] = field(default_factory=list)
    templates_dir: str | None = None

    def validate(self) -> None:
        _validate_str_list("admin.addons", self.addons)
        _validate_str_list("admin.endpoints", self.endpoints)
        _validate_bind_address("admin.bind_address", self.bind_address)
        if self.overlay is not None and not isinstance(self.overlay, str):
            raise ValueError("`admin.overlay` must be a string.")
        if self.templates_dir is not None and not isinstance(self.templates_dir, str):
            raise ValueError("`admin.templates_dir` must be a string.")


@dataclass
class StaminabootConfig:
    launcher: LauncherConfig = field(default_factory=LauncherConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    source_path: Path | None = None

    def validate(self) -> None:
        self.launcher.validate()
        self.admin.validate()


def expand_env_vars(data: Any) -> Any:
    """Recursively expand ``${VAR}`` and ``${VAR:-default}`` in string values."""
    if isinstance(data, dict):
        return {k: expand_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [expand_env_vars(item) for item in data]
    if isinstance(data, str):
        return ENV_VAR_PATTERN.sub(_env_var_replacer, data)
    return data


def _env_var_replacer(match: re.Match[str]) -> str:
    var_name = match.group(1)
    default_value = match.group(2)

    value = os.environ.get(var_name)
    if value is not None:
        return value
    if default_value is not None:
        return default_value

    LOGGER.warning(f"Environment variable ${var_name} is not set and has no default")
    return ""


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a YAML mapping, got {type(data).__name__}")
    return expand_env_vars(data)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"`{name}` must be a mapping")
    return section


def _list_value(data: dict[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None:
        return []
    return list(value) if isinstance(value, list) else value


def dict_to_config(data: dict[str, Any]) -> StaminabootConfig:
    launcher_data = _section(data, "launcher")
    admin_data = _section(data, "admin")

    launcher = LauncherConfig(
        source=launcher_data.get("from"),
        discovery_timeout_ms=launcher_data.get("discovery_timeout_ms", _DEFAULT_DISCOVERY_TIMEOUT_MS),
        bind_address=launcher_data.get("bind_address", WILDCARD_ADDRESS),
        init_dir=launcher_data.get("init_dir"),
    )
    admin = AdminConfig(
        addons=_list_value(admin_data, "addons"),
        overlay=admin_data.get("overlay"),
        bind_address=admin_data.get("bind_address", WILDCARD_ADDRESS),
        endpoints=_list_value(admin_data, "endpoints"),
        templates_dir=admin_data.get("templates_dir"),
    )
    return StaminabootConfig(launcher=launcher, admin=admin)


def load_config(
    path: str | Path | None = None,
    *,
    app_dir: str | Path | None = None,
) -> StaminabootConfig:
    """Load configuration from ``path``, or from the app dir when present.

    Raises:
        ConfigError: If an explicit config file is missing, is not valid YAML,
            or holds invalid values.
    """
    if path is not None:
        resolved = Path(path).expanduser()
        if not resolved.exists():
            raise ConfigError(f"Config file not found: {resolved}")
    else:
        resolved = config_path(app_dir)
        if not resolved.exists():
            LOGGER.debug("No config file found: using defaults")
            return StaminabootConfig()

    try:
        data = load_yaml_file(resolved)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {resolved}: {exc}") from exc

    config = dict_to_config(data)
    try:
        config.validate()
    except ValueError as exc:
        raise ConfigError(f"Invalid configuration in {resolved}: {exc}") from exc
    config.source_path = resolved
    LOGGER.debug(f"Loaded config from {resolved}")
    return config
