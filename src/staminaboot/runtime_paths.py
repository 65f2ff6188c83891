"""Locations of the launcher's files.

Everything lives under one app dir, ``~/.stamina`` unless ``STAMINABOOT_HOME``
or an explicit directory says otherwise::

    <app dir>/
        config.yml
        bootstrap/launcher.json
        templates/                  (admin side)
        cache/bootstrap.pkg
        cache/runtime/
        cache/runtime.installed
"""

from __future__ import annotations

import os
from pathlib import Path

APP_DIR_ENV = "STAMINABOOT_HOME"
DEFAULT_APP_DIR_NAME = ".stamina"


def get_app_dir(app_dir: str | Path | None = None) -> Path:
    if app_dir is None:
        app_dir = os.environ.get(APP_DIR_ENV) or Path.home() / DEFAULT_APP_DIR_NAME
    return Path(app_dir).expanduser().resolve()


def cache_dir(app_dir: str | Path | None = None) -> Path:
    return get_app_dir(app_dir) / "cache"


def bootstrap_package_path(app_dir: str | Path | None = None) -> Path:
    return cache_dir(app_dir) / "bootstrap.pkg"


def runtime_dir(app_dir: str | Path | None = None) -> Path:
    return cache_dir(app_dir) / "runtime"


def runtime_installed_marker(app_dir: str | Path | None = None) -> Path:
    return cache_dir(app_dir) / "runtime.installed"


def launcher_settings_path(app_dir: str | Path | None = None) -> Path:
    return get_app_dir(app_dir) / "bootstrap" / "launcher.json"


def templates_dir(app_dir: str | Path | None = None) -> Path:
    return get_app_dir(app_dir) / "templates"


def config_path(app_dir: str | Path | None = None) -> Path:
    return get_app_dir(app_dir) / "config.yml"
