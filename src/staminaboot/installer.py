"""Install a runtime image from provisioning information."""

from __future__ import annotations

import gzip
import io
import os
import shutil
import stat
import sys
import tarfile
import tempfile
import zipfile
from collections.abc import Mapping
from pathlib import Path, PurePosixPath

from .log import get_logger
from .package import OVERLAY_ENTRY, RUNTIME_TAR_GZ_ENTRY, RUNTIME_ZIP_ENTRY, addon_entry

LOGGER = get_logger(__name__)

ADDONS_DIR_NAME = "addons"
ADDON_SUFFIX = ".esa"
ADDON_MANIFEST_ENTRY = "OSGI-INF/SUBSYSTEM.MF"
ADDON_NAME_ATTRIBUTE = "Subsystem-SymbolicName"
INIT_CONF_NAME = "org.apache.felix.fileinstall-init.cfg"

_COPY_BUFFER_SIZE = 4096
_LAUNCHER_PERMISSIONS = stat.S_IRUSR | stat.S_IXUSR | stat.S_IRGRP | stat.S_IXGRP


class InstallError(Exception):
    """The provisioning information cannot produce a runtime."""


def is_windows(platform: str = sys.platform) -> bool:
    return platform in {"win32", "cygwin"}


def runtime_image_entry(platform: str = sys.platform) -> str:
    """Return the runtime image variant used on ``platform``."""
    return RUNTIME_ZIP_ENTRY if is_windows(platform) else RUNTIME_TAR_GZ_ENTRY


def _safe_rel(path: str) -> Path | None:
    posix = PurePosixPath(path.replace("\\", "/"))
    if posix.is_absolute():
        return None
    parts = []
    for part in posix.parts:
        if part in {"", "."}:
            continue
        if part == "..":
            return None
        parts.append(part)
    if not parts:
        return None
    return Path(*parts)


def _strip_root(name: str) -> Path | None:
    """Drop the image's own root folder from an archive member name."""
    head, sep, remainder = name.replace("\\", "/").partition("/")
    return _safe_rel(remainder if sep else head)


def _write_stream(source, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as handle:
        shutil.copyfileobj(source, handle, _COPY_BUFFER_SIZE)


def _extract_zip(data: bytes, runtime_dir: Path, *, strip_root: bool) -> int:
    count = 0
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            rel = _strip_root(info.filename) if strip_root else _safe_rel(info.filename)
            if rel is None:
                continue
            LOGGER.debug(f"Extracting file: {rel.as_posix()}")
            with archive.open(info) as source:
                _write_stream(source, runtime_dir / rel)
            count += 1
    return count


def _grant_launcher_permissions(bin_dir: Path) -> None:
    if os.name == "nt" or not bin_dir.is_dir():
        return
    for path in bin_dir.iterdir():
        if path.is_file():
            path.chmod(path.stat().st_mode | _LAUNCHER_PERMISSIONS)


def _extract_tar_gz(data: bytes, runtime_dir: Path) -> int:
    fd, temp_name = tempfile.mkstemp(prefix="stamina-runtime-", suffix=".tar")
    tar_path = Path(temp_name)
    count = 0
    try:
        with os.fdopen(fd, "wb") as handle:
            with gzip.GzipFile(fileobj=io.BytesIO(data), mode="rb") as source:
                shutil.copyfileobj(source, handle, _COPY_BUFFER_SIZE)

        with tarfile.open(tar_path, mode="r:") as archive:
            for member in archive:
                if not member.isfile():
                    continue
                rel = _strip_root(member.name)
                if rel is None:
                    continue
                source = archive.extractfile(member)
                if source is None:
                    continue
                LOGGER.debug(f"Extracting file: {rel.as_posix()}")
                with source:
                    _write_stream(source, runtime_dir / rel)
                count += 1

        _grant_launcher_permissions(runtime_dir / "bin")
    finally:
        tar_path.unlink(missing_ok=True)
    return count


def read_manifest_attribute(text: str, attribute: str) -> str | None:
    """Return a main attribute from a JAR-style manifest.

    Lines starting with a single space continue the previous value. The main
    section ends at the first blank line.
    """
    values: dict[str, str] = {}
    current: str | None = None
    for line in text.splitlines():
        if not line:
            break
        if line.startswith(" ") and current is not None:
            values[current] += line[1:]
            continue
        key, sep, value = line.partition(":")
        if not sep:
            current = None
            continue
        current = key.strip()
        values[current] = value.strip()
    found = values.get(attribute)
    return found.strip() if found else None


def addon_identity(path: Path) -> str | None:
    """Return the symbolic name declared by an add-on archive, if any."""
    try:
        with zipfile.ZipFile(path) as archive:
            try:
                raw = archive.read(ADDON_MANIFEST_ENTRY)
            except KeyError:
                return None
    except zipfile.BadZipFile:
        LOGGER.debug(f"Add-on is not a ZIP archive: {path}")
        return None
    name = read_manifest_attribute(raw.decode("utf-8", errors="replace"), ADDON_NAME_ATTRIBUTE)
    if not name:
        return None
    # Attribute parameters such as ";version=1.0" are not part of the name.
    name = name.split(";", 1)[0].strip()
    if not name or _safe_rel(name) is None or "/" in name or "\\" in name:
        return None
    return name


def _install_addons(info: Mapping[str, object], runtime_dir: Path) -> list[Path]:
    addons_dir = runtime_dir / ADDONS_DIR_NAME
    installed: list[Path] = []
    ordinal = 0
    while True:
        key = addon_entry(ordinal)
        content = info.get(key)
        if content is None:
            break
        if not isinstance(content, bytes):
            raise InstallError(f"Unexpected content for add-on entry: {key}")

        fd, temp_name = tempfile.mkstemp(prefix="stamina-addon-", suffix=ADDON_SUFFIX)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
            name = addon_identity(temp_path) or key[: -len(ADDON_SUFFIX)]
            addons_dir.mkdir(parents=True, exist_ok=True)
            target = addons_dir / f"{name}{ADDON_SUFFIX}"
            LOGGER.debug(f"Extracting addon: {target.name}")
            shutil.move(str(temp_path), target)
        finally:
            temp_path.unlink(missing_ok=True)
        installed.append(target)
        ordinal += 1
    return installed


def install_runtime(
    info: Mapping[str, object],
    runtime_dir: str | Path,
    *,
    platform: str = sys.platform,
) -> Path:
    """Extract the runtime image and add-ons from ``info`` into ``runtime_dir``.

    Marking the installation complete is left to the caller, and must only
    happen once this function has returned.
    """
    destination = Path(runtime_dir)
    key = runtime_image_entry(platform)
    LOGGER.debug(f"Using runtime type: {key}")

    image = info.get(key)
    if image is None:
        raise InstallError(f"Missing runtime image in provisioning data: {key}")
    if not isinstance(image, bytes):
        raise InstallError(f"Unexpected content for runtime image: {key}")

    destination.mkdir(parents=True, exist_ok=True)
    LOGGER.debug("Extracting runtime")
    try:
        if key == RUNTIME_ZIP_ENTRY:
            count = _extract_zip(image, destination, strip_root=True)
        else:
            count = _extract_tar_gz(image, destination)
    except (tarfile.TarError, zipfile.BadZipFile, gzip.BadGzipFile, EOFError) as exc:
        raise InstallError(f"Corrupted runtime image {key}: {exc}") from exc
    LOGGER.debug(f"Extracted {count} runtime files")

    overlay = info.get(OVERLAY_ENTRY)
    if isinstance(overlay, bytes):
        LOGGER.debug("Applying runtime overlay")
        try:
            _extract_zip(overlay, destination, strip_root=False)
        except zipfile.BadZipFile as exc:
            raise InstallError(f"Corrupted runtime overlay: {exc}") from exc

    _install_addons(info, destination)
    return destination


def write_init_conf(runtime_dir: str | Path, init_dir: str | Path) -> Path:
    """Point the runtime at an extra configuration directory."""
    init_path = Path(init_dir).expanduser().resolve()
    LOGGER.info(f"Using configuration directory: {init_path}")

    conf_dir = Path(runtime_dir) / "etc"
    conf_dir.mkdir(parents=True, exist_ok=True)
    conf_file = conf_dir / INIT_CONF_NAME
    lines = [
        "# Generated file: DO NOT MODIFY IT!",
        f"felix.fileinstall.dir={init_path.as_posix()}",
        "felix.fileinstall.filter=.*\\\\.(cfg|config)",
        "felix.fileinstall.poll=1000",
        "felix.fileinstall.log.level=3",
    ]
    conf_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return conf_file
