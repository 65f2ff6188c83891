"""LAN discovery of bootstrap packages over UDP broadcast.

An advertiser periodically broadcasts a small JSON document::

    {"version": 1, "bootstrap-package-urls": ["http://host:8080/bootstrap.pkg"]}

to UDP port 17710. A prober listens on that port and returns the URLs of the
first advertisement it receives.
"""

from __future__ import annotations

import ipaddress
import json
import socket
import threading
import time
import urllib.parse
from collections.abc import Sequence
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass

import psutil

from .log import get_logger

LOGGER = get_logger(__name__)

DISCOVERY_UDP_PORT = 17710
ADVERTISEMENT_VERSION = 1
MAX_PAYLOAD_BYTES = 1024
WILDCARD_ADDRESS = "0.0.0.0"
LIMITED_BROADCAST_ADDRESS = "255.255.255.255"

_URLS_FIELD = "bootstrap-package-urls"
_ADVERTISE_INTERVAL_S = 2.0
_ADVERTISER_JOIN_TIMEOUT_S = 1.0
_PROBE_JOIN_TIMEOUT_S = 1.0
_PROBE_POLL_S = 0.2


class DiscoveryError(Exception):
    """A discovery datagram violates the advertisement protocol."""


@dataclass(frozen=True)
class Advertisement:
    urls: tuple[str, ...]
    version: int = ADVERTISEMENT_VERSION

    def encode(self) -> bytes:
        payload = {"version": self.version, _URLS_FIELD: list(self.urls)}
        data = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        if len(data) > MAX_PAYLOAD_BYTES:
            raise ValueError(
                f"Advertisement is {len(data)} bytes, limit is {MAX_PAYLOAD_BYTES}."
            )
        return data


def _validate_url(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise DiscoveryError(f"Invalid bootstrap package URL: {value!r}")
    parts = urllib.parse.urlsplit(value)
    if not parts.scheme or not (parts.netloc or parts.path):
        raise DiscoveryError(f"Bootstrap package URL must be absolute: {value!r}")
    return value


def decode_advertisement(payload: bytes) -> Advertisement | None:
    """Parse an advertisement datagram.

    Returns None for envelopes that carry no package (version < 1 or no URL
    field). Raises DiscoveryError for malformed payloads, including an empty
    URL list.
    """
    try:
        document = json.loads(payload.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise DiscoveryError("Advertisement is not valid UTF-8") from exc
    except json.JSONDecodeError as exc:
        raise DiscoveryError(f"Advertisement is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise DiscoveryError("Advertisement must be a JSON object")

    version = document.get("version", ADVERTISEMENT_VERSION)
    if not isinstance(version, int) or isinstance(version, bool):
        raise DiscoveryError(f"Invalid advertisement version: {version!r}")
    if version < 1:
        return None

    urls = document.get(_URLS_FIELD)
    if urls is None:
        return None
    if not isinstance(urls, list):
        raise DiscoveryError(f"`{_URLS_FIELD}` must be a list")
    if not urls:
        raise DiscoveryError("No URL set by bootstrap admin instance")
    return Advertisement(urls=tuple(_validate_url(url) for url in urls), version=version)


def _validate_bind_address(bind_address: str) -> str:
    try:
        return str(ipaddress.ip_address(bind_address))
    except ValueError as exc:
        raise ValueError(f"Invalid bind address: {bind_address!r}") from exc


def resolve_broadcast_addresses(bind_address: str = WILDCARD_ADDRESS) -> list[str]:
    """Return the broadcast addresses reachable from ``bind_address``."""
    address = _validate_bind_address(bind_address)
    if address == WILDCARD_ADDRESS:
        return [LIMITED_BROADCAST_ADDRESS]

    found_interface = False
    broadcasts: list[str] = []
    for name, addresses in psutil.net_if_addrs().items():
        if not any(item.address == address for item in addresses):
            continue
        found_interface = True
        for item in addresses:
            if item.family != socket.AF_INET or not item.broadcast:
                continue
            if item.broadcast not in broadcasts:
                LOGGER.debug(f"Using broadcast address {item.broadcast} from interface {name}")
                broadcasts.append(item.broadcast)

    if not found_interface:
        raise ValueError(f"No network interface found for bind address: {bind_address}")
    return broadcasts or [LIMITED_BROADCAST_ADDRESS]


class NetworkAdvertiser:
    """Periodically broadcast the availability of a bootstrap package."""

    def __init__(
        self,
        urls: Sequence[str],
        *,
        bind_address: str = WILDCARD_ADDRESS,
        port: int = DISCOVERY_UDP_PORT,
        interval_s: float = _ADVERTISE_INTERVAL_S,
        broadcast_addresses: Sequence[str] | None = None,
    ):
        if not urls:
            raise ValueError("`urls` must contain at least one bootstrap package URL.")
        if interval_s <= 0:
            raise ValueError("`interval_s` must be positive.")
        self.advertisement = Advertisement(urls=tuple(urls))
        self._payload = self.advertisement.encode()
        self.bind_address = _validate_bind_address(bind_address)
        self.port = port
        self.interval_s = interval_s
        self._broadcast_addresses = list(broadcast_addresses) if broadcast_addresses else None
        self._stop_event = threading.Event()
        self._worker: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    @property
    def broadcast_addresses(self) -> list[str]:
        if self._broadcast_addresses is None:
            self._broadcast_addresses = resolve_broadcast_addresses(self.bind_address)
        return list(self._broadcast_addresses)

    def start(self) -> None:
        if self.is_running:
            return
        targets = self.broadcast_addresses
        LOGGER.info(
            "Bootstrap package can be downloaded from these endpoints: "
            f"{list(self.advertisement.urls)}"
        )
        self._stop_event.clear()
        self._worker = threading.Thread(
            target=self._run,
            args=(targets,),
            name="staminaboot-network-advertiser",
            daemon=True,
        )
        self._worker.start()

    def stop(self) -> None:
        worker = self._worker
        self._stop_event.set()
        if worker is None:
            return
        worker.join(timeout=_ADVERTISER_JOIN_TIMEOUT_S)
        if worker.is_alive():
            LOGGER.debug("Network advertiser did not stop in time")
        self._worker = None

    def __enter__(self) -> "NetworkAdvertiser":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
        return None

    def _run(self, targets: list[str]) -> None:
        LOGGER.info("Starting bootstrap network advertiser")
        while not self._stop_event.is_set():
            try:
                with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
                    for address in targets:
                        sock.sendto(self._payload, (address, self.port))
            except OSError as exc:
                LOGGER.warning(f"Error while publishing bootstrap advert: {exc}")
            self._stop_event.wait(self.interval_s)
        LOGGER.info("Bootstrap network advertiser stopped")


def _listen(sock: socket.socket, result: Future, closed: threading.Event) -> None:
    """Receive a single advertisement from ``sock`` and publish its URLs.

    The first datagram decides the outcome of the probe; anything arriving
    later is never read.
    """
    LOGGER.debug("Starting bootstrap network probe")
    urls: set[str] = set()
    try:
        while not closed.is_set():
            try:
                payload, sender = sock.recvfrom(MAX_PAYLOAD_BYTES)
            except socket.timeout:
                continue
            LOGGER.debug(f"Reading response from server: {sender}")
            advertisement = decode_advertisement(payload)
            if advertisement is not None:
                urls = set(advertisement.urls)
                LOGGER.debug(f"Got URLs from bootstrap admin: {sorted(urls)}")
            break
    except (DiscoveryError, OSError) as exc:
        if not closed.is_set():
            LOGGER.warning(f"Error while looking for bootstrap package: {exc}")
    finally:
        if not result.done():
            result.set_result(urls)


class NetworkProber:
    """Locate a bootstrap admin instance on the connected networks.

    When several instances advertise, the first one to respond wins.
    """

    def __init__(self, *, bind_address: str = WILDCARD_ADDRESS, port: int = DISCOVERY_UDP_PORT):
        self.bind_address = _validate_bind_address(bind_address)
        self.port = port

    def _open_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.bind_address, self.port))
            sock.settimeout(_PROBE_POLL_S)
        except OSError:
            sock.close()
            raise
        return sock

    def discover(self, timeout_ms: int) -> set[str]:
        """Wait up to ``timeout_ms`` for an advertisement.

        Returns the advertised URLs, or an empty set when nothing valid was
        received in time. Raises OSError when the discovery port cannot be
        bound on the configured address.
        """
        if timeout_ms < 1:
            raise ValueError(f"Invalid timeout: {timeout_ms}")

        sock = self._open_socket()

        result: Future = Future()
        closed = threading.Event()
        listener = threading.Thread(
            target=_listen,
            args=(sock, result, closed),
            name="staminaboot-network-probe",
            daemon=True,
        )
        started = time.monotonic()
        listener.start()
        try:
            urls = result.result(timeout=timeout_ms / 1000.0)
        except FutureTimeoutError:
            LOGGER.debug("Interrupting bootstrap network probe")
            urls = set()
        finally:
            closed.set()
            sock.close()
            listener.join(timeout=_PROBE_JOIN_TIMEOUT_S)

        LOGGER.debug(
            f"Bootstrap network probe stopped after {time.monotonic() - started:.2f}s"
        )
        return set(urls)
