"""Bootstrap package container format.

A bootstrap package is a ZIP archive holding a fixed set of named entries:

- ``stamina.bootstrap.agent.jar``: the agent module run first
- ``provisioning.start.bundle``: UTF-8 text naming the agent entry
- ``stamina.runtime.zip`` / ``stamina.runtime.tar.gz``: runtime image variants
- ``stamina.runtime.overlay.zip``: optional extra files merged over the image
- ``stamina.addon.<N>.esa``: add-ons, N counting from zero
"""

from __future__ import annotations

import os
import shutil
import tempfile
import zipfile
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import BinaryIO, Union

AGENT_ENTRY = "stamina.bootstrap.agent.jar"
START_MARKER_ENTRY = "provisioning.start.bundle"
RUNTIME_ZIP_ENTRY = "stamina.runtime.zip"
RUNTIME_TAR_GZ_ENTRY = "stamina.runtime.tar.gz"
OVERLAY_ENTRY = "stamina.runtime.overlay.zip"

PACKAGE_MIME_TYPE = "application/vnd.stamina.package"

_COPY_BUFFER_SIZE = 4096

EntrySource = Union[bytes, Path, BinaryIO]


class PackageError(Exception):
    """The bootstrap package is unreadable or malformed."""


def addon_entry(ordinal: int) -> str:
    if ordinal < 0:
        raise ValueError(f"add-on ordinal must be >= 0, got: {ordinal}")
    return f"stamina.addon.{ordinal}.esa"


def package_entries(
    *,
    agent: EntrySource,
    runtime_zip: EntrySource,
    runtime_tar_gz: EntrySource,
    overlay: EntrySource | None = None,
    addons: Sequence[EntrySource] = (),
) -> list[tuple[str, EntrySource]]:
    """Return package entries in their canonical write order."""
    entries: list[tuple[str, EntrySource]] = [
        (AGENT_ENTRY, agent),
        (START_MARKER_ENTRY, AGENT_ENTRY.encode("utf-8")),
        (RUNTIME_ZIP_ENTRY, runtime_zip),
        (RUNTIME_TAR_GZ_ENTRY, runtime_tar_gz),
    ]
    if overlay is not None:
        entries.append((OVERLAY_ENTRY, overlay))
    for ordinal, addon in enumerate(addons):
        entries.append((addon_entry(ordinal), addon))
    return entries


def _copy_source(source: EntrySource, target: BinaryIO) -> None:
    if isinstance(source, (bytes, bytearray)):
        target.write(source)
        return
    if isinstance(source, Path):
        with source.open("rb") as handle:
            shutil.copyfileobj(handle, target, _COPY_BUFFER_SIZE)
        return
    shutil.copyfileobj(source, target, _COPY_BUFFER_SIZE)


def _default_file_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def publish_file(temp_path: Path, destination: Path) -> None:
    """Move a finished temporary file to ``destination``.

    The published file gets the mode a plainly created file would have
    under the current umask, not the owner-only mode of a temporary file.
    """
    temp_path.chmod(_default_file_mode())
    os.replace(temp_path, destination)


def write_package(path: str | Path, entries: Iterable[tuple[str, EntrySource]]) -> Path:
    """Write a bootstrap package to ``path``.

    The archive is assembled in a temporary file next to ``path`` and moved
    into place once every entry has been written, so a failed write never
    leaves a package behind.
    """
    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{destination.name}-",
        suffix=".tmp",
        dir=destination.parent,
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as raw_handle:
            with zipfile.ZipFile(raw_handle, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
                seen: set[str] = set()
                for name, source in entries:
                    if name in seen:
                        raise ValueError(f"Duplicate package entry: {name}")
                    seen.add(name)
                    with archive.open(name, mode="w", force_zip64=True) as target:
                        _copy_source(source, target)
        publish_file(temp_path, destination)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
    return destination


def open_package(path: str | Path) -> zipfile.ZipFile:
    """Open a bootstrap package for reading."""
    try:
        return zipfile.ZipFile(path, mode="r")
    except zipfile.BadZipFile as exc:
        raise PackageError(f"Not a bootstrap package: {path}") from exc


def read_entry(archive: zipfile.ZipFile, name: str) -> bytes | None:
    """Return the content of entry ``name``, or None when it is absent."""
    try:
        info = archive.getinfo(name)
    except KeyError:
        return None
    try:
        with archive.open(info) as handle:
            return handle.read()
    except (zipfile.BadZipFile, EOFError) as exc:
        raise PackageError(f"Corrupted bootstrap package entry: {name}") from exc
