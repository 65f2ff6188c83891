from __future__ import annotations

import os
from pathlib import Path

import pytest

import staminaboot.preflight as preflight
from staminaboot.runtime_paths import bootstrap_package_path, runtime_dir, runtime_installed_marker


def _install_fake_runtime(app_dir: Path, launcher_mode: int = 0o755) -> Path:
    runtime = runtime_dir(app_dir)
    launcher = runtime / "bin" / "stamina"
    launcher.parent.mkdir(parents=True)
    launcher.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    launcher.chmod(launcher_mode)
    bootstrap_package_path(app_dir).write_bytes(b"pkg")
    runtime_installed_marker(app_dir).touch()
    return launcher


def test_launcher_relative_path() -> None:
    assert preflight.launcher_relative_path("win32") == Path("bin") / "stamina.bat"
    assert preflight.launcher_relative_path("linux") == Path("bin") / "stamina"


def test_check_runtime_reports_missing_assets(tmp_path: Path) -> None:
    app_dir = tmp_path / "app"

    result = preflight.check_runtime(app_dir, "linux")

    assert not result.ok
    assert not result.installed
    assert result.launcher is None
    assert bootstrap_package_path(app_dir) in result.missing_paths
    assert runtime_installed_marker(app_dir) in result.missing_paths


def test_check_runtime_ok_when_installed(tmp_path: Path) -> None:
    app_dir = tmp_path / "app"
    launcher = _install_fake_runtime(app_dir)

    result = preflight.check_runtime(app_dir, "linux")

    assert result.ok
    assert result.launcher == launcher
    assert not result.missing_paths


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_check_runtime_flags_non_executable_launcher(tmp_path: Path) -> None:
    app_dir = tmp_path / "app"
    _install_fake_runtime(app_dir, launcher_mode=0o644)

    result = preflight.check_runtime(app_dir, "linux")

    assert result.installed
    assert result.launcher_not_executable
    assert not result.ok


def test_assert_runtime_ready_explains_missing_paths(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError, match="staminaboot --clean"):
        preflight.assert_runtime_ready(tmp_path / "app", "linux")
