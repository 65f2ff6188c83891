"""Assemble bootstrap packages from runtime templates, overlay and add-ons."""

from __future__ import annotations

import os
import tempfile
import urllib.parse
import urllib.request
import zipfile
from collections.abc import Iterator, Sequence
from itertools import chain
from pathlib import Path

from . import __version__
from .log import get_logger
from .package import (
    AGENT_ENTRY,
    RUNTIME_TAR_GZ_ENTRY,
    RUNTIME_ZIP_ENTRY,
    EntrySource,
    addon_entry,
    package_entries,
    write_package,
)
from .runtime_paths import templates_dir as default_templates_dir

LOGGER = get_logger(__name__)

TEMPLATE_ENTRIES = (AGENT_ENTRY, RUNTIME_ZIP_ENTRY, RUNTIME_TAR_GZ_ENTRY)
OVERLAY_ARCHIVE_SUFFIXES = (".zip",)

_DEFAULT_TIMEOUT_S = 120
_USER_AGENT = f"staminaboot-builder/{__version__}"


def _template_path(templates_dir: Path, name: str) -> Path:
    path = templates_dir / name
    if not path.is_file():
        raise FileNotFoundError(f"Missing bootstrap package template: {path}")
    return path


def addon_url(value: str) -> str:
    """Return ``value`` as an URL, turning bare filesystem paths into file URIs."""
    text = value.strip()
    if not text:
        raise ValueError("add-on URL cannot be empty")
    scheme = urllib.parse.urlsplit(text).scheme
    # Single letters are Windows drive names, not schemes.
    if len(scheme) > 1:
        return text
    return Path(text).expanduser().resolve().as_uri()


def _overlay_file_names(root: Path) -> list[tuple[Path, str]]:
    files: list[tuple[Path, str]] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if not path.is_file():
                continue
            arcname = os.path.relpath(path, root).replace(os.sep, "/").replace("\\", "/")
            files.append((path, arcname))
    return files


def _archive_overlay_dir(root: Path, destination: Path) -> bool:
    files = _overlay_file_names(root)
    if not files:
        LOGGER.debug(f"Overlay directory {root} has no files: skipping overlay")
        return False
    with zipfile.ZipFile(destination, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path, arcname in files:
            LOGGER.debug(f"Adding overlay file: {arcname}")
            archive.write(path, arcname)
    return True


def _resolve_overlay(overlay: Path | None, work_dir: Path) -> Path | None:
    if overlay is None:
        return None
    if overlay.is_dir():
        archived = work_dir / "overlay.zip"
        return archived if _archive_overlay_dir(overlay, archived) else None
    if overlay.is_file():
        if overlay.suffix.lower() not in OVERLAY_ARCHIVE_SUFFIXES:
            raise ValueError(f"Overlay must be a directory or a .zip archive: {overlay}")
        return overlay
    raise FileNotFoundError(f"Overlay not found: {overlay}")


def _addon_entries(addon_urls: Sequence[str]) -> Iterator[tuple[str, EntrySource]]:
    for ordinal, url in enumerate(addon_urls):
        LOGGER.debug(f"Fetching add-on {ordinal}: {url}")
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        with urllib.request.urlopen(request, timeout=_DEFAULT_TIMEOUT_S) as response:
            yield addon_entry(ordinal), response


def build_package(
    output: str | Path,
    overlay: str | Path | None = None,
    addon_urls: Sequence[str] = (),
    *,
    templates_dir: str | Path | None = None,
) -> Path:
    """Build a bootstrap package at ``output``.

    Any template, overlay or add-on that cannot be read aborts the build with
    an ``OSError``; ``output`` is left untouched in that case.
    """
    resolved_templates = Path(templates_dir) if templates_dir is not None else default_templates_dir()
    templates = {name: _template_path(resolved_templates, name) for name in TEMPLATE_ENTRIES}
    urls = [addon_url(url) for url in addon_urls]

    LOGGER.info(f"Building bootstrap package with addons: {urls}")
    with tempfile.TemporaryDirectory(prefix="staminaboot-build-") as temp_dir:
        overlay_archive = _resolve_overlay(
            Path(overlay).expanduser() if overlay is not None else None,
            Path(temp_dir),
        )
        entries = package_entries(
            agent=templates[AGENT_ENTRY],
            runtime_zip=templates[RUNTIME_ZIP_ENTRY],
            runtime_tar_gz=templates[RUNTIME_TAR_GZ_ENTRY],
            overlay=overlay_archive,
        )
        path = write_package(output, chain(entries, _addon_entries(urls)))

    LOGGER.info(f"Bootstrap package is ready: {path}")
    return path
