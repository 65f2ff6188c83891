from __future__ import annotations

from pathlib import Path

from staminaboot.runtime_paths import (
    APP_DIR_ENV,
    bootstrap_package_path,
    config_path,
    get_app_dir,
    launcher_settings_path,
    runtime_dir,
    runtime_installed_marker,
    templates_dir,
)


def test_get_app_dir_uses_argument(tmp_path: Path) -> None:
    explicit = tmp_path / "explicit-dir"
    assert get_app_dir(explicit) == explicit.resolve()


def test_get_app_dir_uses_env_override(monkeypatch, tmp_path: Path) -> None:
    override = tmp_path / "override-dir"
    monkeypatch.setenv(APP_DIR_ENV, str(override))
    assert get_app_dir() == override.resolve()


def test_default_paths_are_under_app_dir(tmp_path: Path) -> None:
    app_dir = tmp_path / "app"
    assert bootstrap_package_path(app_dir) == (app_dir / "cache" / "bootstrap.pkg").resolve()
    assert runtime_dir(app_dir) == (app_dir / "cache" / "runtime").resolve()
    assert runtime_installed_marker(app_dir) == (app_dir / "cache" / "runtime.installed").resolve()
    assert launcher_settings_path(app_dir) == (app_dir / "bootstrap" / "launcher.json").resolve()
    assert templates_dir(app_dir) == (app_dir / "templates").resolve()
    assert config_path(app_dir) == (app_dir / "config.yml").resolve()


def test_get_app_dir_defaults_to_home(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv(APP_DIR_ENV, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("USERPROFILE", str(tmp_path))
    assert get_app_dir() == (tmp_path / ".stamina").resolve()
