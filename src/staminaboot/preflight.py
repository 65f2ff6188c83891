"""Installed runtime checks."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from .installer import is_windows
from .runtime_paths import (
    bootstrap_package_path,
    get_app_dir,
    runtime_dir,
    runtime_installed_marker,
)


def launcher_relative_path(platform: str = sys.platform) -> Path:
    """Return the runtime launcher location relative to the runtime dir."""
    if is_windows(platform):
        return Path("bin") / "stamina.bat"
    return Path("bin") / "stamina"


def find_launcher(runtime: str | Path, platform: str = sys.platform) -> Path | None:
    """Locate the runtime launcher inside an installed runtime."""
    candidate = Path(runtime) / launcher_relative_path(platform)
    if candidate.is_file():
        return candidate
    return None


@dataclass(frozen=True)
class RuntimeCheckResult:
    app_dir: Path
    runtime_dir: Path
    package_path: Path
    marker_path: Path
    launcher: Path | None
    missing_paths: list[Path]
    launcher_not_executable: bool = False

    @property
    def installed(self) -> bool:
        return self.marker_path.exists()

    @property
    def ok(self) -> bool:
        return self.installed and not self.missing_paths and not self.launcher_not_executable


def check_runtime(app_dir: str | Path | None = None, platform: str = sys.platform) -> RuntimeCheckResult:
    """Check that an installed runtime is ready to be supervised."""
    resolved_app_dir = get_app_dir(app_dir)
    runtime = runtime_dir(resolved_app_dir)
    marker = runtime_installed_marker(resolved_app_dir)
    launcher = find_launcher(runtime, platform)

    required_paths = [
        bootstrap_package_path(resolved_app_dir),
        runtime,
        marker,
        runtime / launcher_relative_path(platform),
    ]
    missing_paths = [path for path in required_paths if not path.exists()]
    not_executable = (
        launcher is not None and not is_windows(platform) and not os.access(launcher, os.X_OK)
    )
    return RuntimeCheckResult(
        app_dir=resolved_app_dir,
        runtime_dir=runtime,
        package_path=bootstrap_package_path(resolved_app_dir),
        marker_path=marker,
        launcher=launcher,
        missing_paths=missing_paths,
        launcher_not_executable=not_executable,
    )


def assert_runtime_ready(app_dir: str | Path | None = None, platform: str = sys.platform) -> None:
    """Raise RuntimeError when the installed runtime is incomplete."""
    result = check_runtime(app_dir, platform)
    if result.ok:
        return

    lines = ["staminaboot runtime is not ready.", ""]
    if result.missing_paths:
        lines.append("Missing runtime paths:")
        for path in result.missing_paths:
            lines.append(f"- {path}")
        lines.append("")

    if result.launcher_not_executable:
        lines.append(f"Runtime launcher is not executable: {result.launcher}")
        lines.append("")

    lines.append("Run `staminaboot --clean` to download and install the runtime again.")
    raise RuntimeError("\n".join(lines))
