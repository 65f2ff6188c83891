from __future__ import annotations

import io
import tarfile
import zipfile
from pathlib import Path

import pytest

from staminaboot.package import AGENT_ENTRY, RUNTIME_TAR_GZ_ENTRY, RUNTIME_ZIP_ENTRY

RUNTIME_ROOT = "stamina-1.0"

LAUNCHER_SCRIPT = "#!/bin/sh\nexit 0\n"


def make_tar_gz(files: dict[str, str | bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def make_zip(files: dict[str, str | bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def make_addon(symbolic_name: str | None, payload: str = "addon") -> bytes:
    files: dict[str, str | bytes] = {"content.txt": payload}
    if symbolic_name is not None:
        files["OSGI-INF/SUBSYSTEM.MF"] = (
            "Manifest-Version: 1.0\n"
            f"Subsystem-SymbolicName: {symbolic_name}\n"
            "Subsystem-Version: 1.0.0\n"
        )
    return make_zip(files)


def runtime_files(launcher_script: str = LAUNCHER_SCRIPT) -> dict[str, str | bytes]:
    return {
        f"{RUNTIME_ROOT}/bin/stamina": launcher_script,
        f"{RUNTIME_ROOT}/bin/stamina.bat": "@echo off\r\nexit /b 0\r\n",
        f"{RUNTIME_ROOT}/etc/system.properties": "stamina.version=1.0\n",
        f"{RUNTIME_ROOT}/lib/boot.jar": b"\x00\x01boot",
    }


def write_templates(directory: Path, launcher_script: str = LAUNCHER_SCRIPT) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    files = runtime_files(launcher_script)
    (directory / AGENT_ENTRY).write_bytes(b"agent-bytes")
    (directory / RUNTIME_ZIP_ENTRY).write_bytes(make_zip(files))
    (directory / RUNTIME_TAR_GZ_ENTRY).write_bytes(make_tar_gz(files))
    return directory


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    return write_templates(tmp_path / "templates")
