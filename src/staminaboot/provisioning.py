"""Read-only provisioning information backed by a bootstrap package."""

from __future__ import annotations

import zipfile
from collections.abc import Iterator, Mapping
from pathlib import Path

from .log import get_logger
from .package import START_MARKER_ENTRY, PackageError, open_package, read_entry

LOGGER = get_logger(__name__)


class ProvisioningInformation(Mapping[str, object]):
    """Lazy view over the entries of a bootstrap package.

    Entry names are indexed once when the package is opened. The start marker
    key maps to the *name* of the agent entry; every other key maps to the raw
    entry bytes, read from the package file on each access. No archive handle
    is kept open between lookups, so a package holding a full runtime image is
    never held in memory for the lifetime of this object.
    """

    def __init__(self, package_path: str | Path):
        self.package_path = Path(package_path)
        self._entries: tuple[str, ...] = ()
        self._agent_entry: str | None = None
        self._index()

    def _index(self) -> None:
        with open_package(self.package_path) as archive:
            names: list[str] = []
            for info in archive.infolist():
                if info.filename == START_MARKER_ENTRY:
                    raw = read_entry(archive, info.filename) or b""
                    try:
                        self._agent_entry = raw.decode("utf-8").strip() or None
                    except UnicodeDecodeError as exc:
                        raise PackageError("Start marker entry is not valid UTF-8") from exc
                    # A blank marker names nothing, so the key is absent.
                    if self._agent_entry is None:
                        continue
                names.append(info.filename)
        self._entries = tuple(names)
        LOGGER.debug(f"Indexed {len(self._entries)} entries from {self.package_path}")

    @property
    def agent_entry(self) -> str | None:
        """Name of the entry to run first, if the package declares one."""
        return self._agent_entry

    def __getitem__(self, key: str) -> object:
        if key == START_MARKER_ENTRY:
            if self._agent_entry is None:
                raise KeyError(key)
            return self._agent_entry
        if key not in self._entries:
            raise KeyError(key)

        try:
            with open_package(self.package_path) as archive:
                content = read_entry(archive, key)
        except (OSError, zipfile.BadZipFile) as exc:
            raise PackageError(f"Error while reading bootstrap package entry: {key}") from exc
        if content is None:
            raise KeyError(key)
        return content

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if key == START_MARKER_ENTRY:
            return self._agent_entry is not None
        return key in self._entries

    def get_bytes(self, key: str) -> bytes | None:
        """Return entry content for ``key``, or None when absent."""
        if key == START_MARKER_ENTRY:
            return None
        value = self.get(key)
        return value if isinstance(value, bytes) else None


def open_provisioning(package_path: str | Path) -> ProvisioningInformation:
    """Open a bootstrap package as provisioning information."""
    return ProvisioningInformation(package_path)
