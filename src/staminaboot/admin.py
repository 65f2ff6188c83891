"""Bootstrap admin: build, publish and advertise bootstrap packages.

Usage:
    staminaboot-admin build <destination> [<addon URL>]*
    staminaboot-admin advertise --url <package URL> [--url ...]
"""

from __future__ import annotations

import argparse
import sys
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from .builder import build_package
from .config import AdminConfig, ConfigError, load_config
from .discovery import DISCOVERY_UDP_PORT, NetworkAdvertiser
from .log import configure_logging, get_logger
from .package import PACKAGE_MIME_TYPE
from .runtime_paths import get_app_dir, templates_dir

LOGGER = get_logger(__name__)

BOOTSTRAP_PACKAGE_PATH = "/bootstrap.pkg"

_BUILDER_JOIN_TIMEOUT_S = 30.0


class Publisher(Protocol):
    """Expose local files over HTTP."""

    def publish(self, url_path: str, file_path: Path, content_type: str) -> None: ...

    def retract(self, url_path: str) -> None: ...


def endpoint_url(base: str, target: str = BOOTSTRAP_PACKAGE_PATH) -> str:
    """Join an HTTP endpoint and a resource path with exactly one slash."""
    prefix = base[:-1] if base.endswith("/") else base
    if not target.startswith("/"):
        target = f"/{target}"
    return prefix + target


class PackageManager:
    """Build the bootstrap package in the background, then publish and advertise it."""

    def __init__(
        self,
        config: AdminConfig,
        publisher: Publisher,
        data_dir: str | Path,
        *,
        endpoints: Sequence[str] = (),
        port: int = DISCOVERY_UDP_PORT,
    ):
        self.config = config
        self.publisher = publisher
        self.data_dir = Path(data_dir)
        self.package_urls = sorted({endpoint_url(base) for base in endpoints or config.endpoints})
        self.port = port
        self.published = threading.Event()
        self.advertiser: NetworkAdvertiser | None = None
        self._builder: threading.Thread | None = None

    @property
    def package_path(self) -> Path:
        return self.data_dir / "bootstrap.pkg"

    def start(self) -> None:
        self._builder = threading.Thread(
            target=self._build_and_publish,
            name="staminaboot-package-builder",
            daemon=True,
        )
        self._builder.start()

    def wait(self, timeout_s: float | None = None) -> bool:
        """Wait for the package to be published."""
        return self.published.wait(timeout_s)

    def close(self) -> None:
        builder = self._builder
        if builder is not None:
            builder.join(timeout=_BUILDER_JOIN_TIMEOUT_S)
            self._builder = None
        if self.advertiser is not None:
            self.advertiser.stop()
            self.advertiser = None
        if self.published.is_set():
            self.publisher.retract(BOOTSTRAP_PACKAGE_PATH)
            self.published.clear()

    def _build_and_publish(self) -> None:
        try:
            build_package(
                self.package_path,
                self.config.overlay,
                self.config.addons,
                templates_dir=self.config.templates_dir,
            )
            self.publisher.publish(BOOTSTRAP_PACKAGE_PATH, self.package_path, PACKAGE_MIME_TYPE)
        except Exception as exc:
            LOGGER.error(f"Error while building bootstrap package: {exc}", exc_info=True)
            return
        self.published.set()

        if not self.package_urls:
            LOGGER.info("No HTTP endpoint known: bootstrap package is not advertised")
            return
        try:
            self.advertiser = NetworkAdvertiser(
                self.package_urls,
                bind_address=self.config.bind_address,
                port=self.port,
            )
            self.advertiser.start()
        except (OSError, ValueError) as exc:
            LOGGER.error(f"Cannot advertise bootstrap package: {exc}")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="staminaboot-admin",
        description="Build and advertise bootstrap packages.",
    )
    parser.add_argument("--app-dir", help="Override staminaboot app directory.")
    parser.add_argument("--config", help="Path to a YAML configuration file.")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debugging.")
    commands = parser.add_subparsers(dest="command", required=True)

    build = commands.add_parser(
        "build",
        help="Build a bootstrap package including addons.",
        description=(
            "Build a bootstrap package including addons. "
            "The generated package file can be deployed anywhere."
        ),
    )
    build.add_argument("destination", help="Bootstrap package file to generate.")
    build.add_argument("addons", nargs="*", metavar="addon URL", help="Add-on to include.")
    build.add_argument("--overlay", help="Directory or .zip archive merged over the runtime image.")
    build.add_argument("--templates-dir", help="Directory holding the runtime templates.")

    advertise = commands.add_parser(
        "advertise",
        help="Broadcast bootstrap package URLs on the local network.",
    )
    advertise.add_argument(
        "--url",
        action="append",
        dest="urls",
        default=[],
        help="Bootstrap package URL to advertise (repeatable).",
    )
    advertise.add_argument("--bind-address", help="Network address used to pick broadcast targets.")
    return parser.parse_args(argv)


def _run_build(args: argparse.Namespace, config: AdminConfig) -> int:
    destination = Path(args.destination)
    print(f"Generating bootstrap package: {destination}")
    build_package(
        destination,
        args.overlay or config.overlay,
        args.addons or config.addons,
        templates_dir=args.templates_dir or config.templates_dir,
    )
    return 0


def _run_advertise(args: argparse.Namespace, config: AdminConfig) -> int:
    urls = args.urls or [endpoint_url(base) for base in config.endpoints]
    if not urls:
        print("No bootstrap package URL to advertise: use --url.", file=sys.stderr)
        return 2
    advertiser = NetworkAdvertiser(urls, bind_address=args.bind_address or config.bind_address)
    advertiser.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        LOGGER.info("Shutting down")
    finally:
        advertiser.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.debug)

    app_dir = get_app_dir(args.app_dir)
    try:
        config = load_config(args.config, app_dir=app_dir).admin
    except ConfigError as exc:
        LOGGER.error(str(exc))
        return 1
    if config.templates_dir is None:
        config.templates_dir = str(templates_dir(app_dir))

    try:
        if args.command == "build":
            return _run_build(args, config)
        return _run_advertise(args, config)
    except (OSError, ValueError) as exc:
        LOGGER.error(f"bootstrap:{args.command} failed: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
