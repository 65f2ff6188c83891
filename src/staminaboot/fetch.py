"""Download bootstrap packages and keep the launcher identity."""

from __future__ import annotations

import json
import os
import platform
import shutil
import tempfile
import urllib.parse
import urllib.request
import uuid
from collections.abc import Iterable
from pathlib import Path

from . import __version__
from .log import get_logger
from .package import publish_file

LOGGER = get_logger(__name__)

LAUNCHER_ID_HEADER = "StaminaBootstrap-Id"

_DEFAULT_TIMEOUT_S = 120
_COPY_BUFFER_SIZE = 64 * 1024


def user_agent() -> str:
    return (
        f"StaminaBootstrap/{__version__} "
        f"({platform.system()}; {platform.machine()}; "
        f"{platform.python_implementation()}/{platform.python_version()})"
    )


def load_launcher_id(settings_path: str | Path) -> str:
    """Return the persistent launcher id, creating it on first use.

    The id lets a bootstrap admin instance recognise a launcher across runs.
    Failing to persist it only costs that recognition, so errors are logged.
    """
    path = Path(settings_path)
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning(f"Failed to load bootstrap user configuration: {path}: {exc}")
        else:
            launcher_id = raw.get("launcher_uuid") if isinstance(raw, dict) else None
            if isinstance(launcher_id, str) and launcher_id:
                return launcher_id

    launcher_id = str(uuid.uuid4())
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"launcher_uuid": launcher_id}, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        LOGGER.warning(f"Failed to update bootstrap user configuration: {path}: {exc}")
    return launcher_id


def _request(url: str, launcher_id: str | None) -> urllib.request.Request:
    headers: dict[str, str] = {}
    scheme = urllib.parse.urlsplit(url).scheme.lower()
    if scheme in {"http", "https"}:
        headers["User-Agent"] = user_agent()
        if launcher_id:
            headers[LAUNCHER_ID_HEADER] = launcher_id
    return urllib.request.Request(url, headers=headers)


def download_package(
    url: str,
    destination: str | Path,
    *,
    launcher_id: str | None = None,
    timeout_s: float = _DEFAULT_TIMEOUT_S,
) -> Path:
    """Download ``url`` to ``destination``; nothing is left behind on failure."""
    target = Path(destination)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}-", suffix=".part", dir=target.parent)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            with urllib.request.urlopen(_request(url, launcher_id), timeout=timeout_s) as response:
                shutil.copyfileobj(response, handle, _COPY_BUFFER_SIZE)
        publish_file(temp_path, target)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
    return target


def download_first(
    urls: Iterable[str],
    destination: str | Path,
    *,
    launcher_id: str | None = None,
) -> str:
    """Try ``urls`` in order and return the first one that downloaded.

    Raises the last download error when every URL failed.
    """
    last_error: Exception | None = None
    for url in urls:
        LOGGER.info(f"Using bootstrap package: {url}")
        try:
            download_package(url, destination, launcher_id=launcher_id)
            return url
        except (OSError, ValueError) as exc:
            LOGGER.warning(f"Cannot download bootstrap package from {url}: {exc}")
            last_error = exc
    if last_error is None:
        raise ValueError("No bootstrap package URL to download from.")
    raise last_error
