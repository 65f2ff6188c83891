"""Bootstrap launcher: fetch a bootstrap package, install and run the runtime.

Usage:
    staminaboot [-f <URL>|bootstrap:network] [-c] [-d]
    python -m staminaboot --check
"""

from __future__ import annotations

import argparse
import shutil
import sys
import threading
from pathlib import Path

from . import __version__
from .agent import Agent
from .config import (
    DEFAULT_BOOTSTRAP_PACKAGE_URL,
    NETWORK_SOURCE,
    ConfigError,
    LauncherConfig,
    load_config,
)
from .discovery import NetworkProber
from .fetch import download_first, load_launcher_id
from .installer import InstallError
from .log import configure_logging, get_logger
from .package import PackageError
from .preflight import assert_runtime_ready
from .provisioning import ProvisioningInformation, open_provisioning
from .runtime_paths import bootstrap_package_path, cache_dir, get_app_dir, launcher_settings_path
from .supervisor import ExitStatus

LOGGER = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="staminaboot",
        description="Download a bootstrap package, then install and supervise the runtime.",
    )
    parser.add_argument(
        "-f",
        "--from",
        dest="source",
        metavar="URL",
        help=(
            "Bootstrap package URL, or `bootstrap:network` to discover one "
            f"on the local network (default: {DEFAULT_BOOTSTRAP_PACKAGE_URL})."
        ),
    )
    parser.add_argument("-c", "--clean", action="store_true", help="Clean cache before starting.")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debugging.")
    parser.add_argument(
        "--app-dir",
        help="Override staminaboot app directory (defaults to $STAMINABOOT_HOME or ~/.stamina).",
    )
    parser.add_argument("--config", help="Path to a YAML configuration file.")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check that an installed runtime is ready, then exit.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _discover_package_urls(config: LauncherConfig) -> list[str]:
    """Probe the network until a bootstrap admin instance answers."""
    prober = NetworkProber(bind_address=config.bind_address)
    LOGGER.info("Looking for a bootstrap package on the network")
    while True:
        urls = prober.discover(config.discovery_timeout_ms)
        if urls:
            return sorted(urls)
        LOGGER.debug("No bootstrap package found on the network: retrying")


def _package_urls(config: LauncherConfig) -> list[str]:
    if config.use_network:
        return _discover_package_urls(config)
    return [config.source or DEFAULT_BOOTSTRAP_PACKAGE_URL]


def _clean_cache(app_dir: Path) -> None:
    cache = cache_dir(app_dir)
    if cache.exists():
        LOGGER.info("Cleaning cache")
        shutil.rmtree(cache)


def _verify_agent(provisioning: ProvisioningInformation) -> None:
    agent_entry = provisioning.agent_entry
    if agent_entry is None:
        raise PackageError("Missing bootstrap agent in bootstrap package")
    if provisioning.get_bytes(agent_entry) is None:
        raise PackageError(f"Missing bootstrap agent entry in bootstrap package: {agent_entry}")
    LOGGER.debug(f"Bootstrap agent entry: {agent_entry}")


def _open_package(package: Path) -> ProvisioningInformation | None:
    try:
        provisioning = open_provisioning(package)
        _verify_agent(provisioning)
    except (OSError, PackageError) as exc:
        LOGGER.error(f"Invalid bootstrap package: {exc}")
        package.unlink(missing_ok=True)
        return None
    return provisioning


def _run_agent(agent: Agent, runtime_exited: threading.Event) -> int:
    try:
        agent.start()
    except (OSError, InstallError, PackageError, RuntimeError) as exc:
        LOGGER.error(f"Failed to start bootstrap agent: {exc}")
        return 1

    try:
        runtime_exited.wait()
    except KeyboardInterrupt:
        LOGGER.info("Stopping runtime")
    finally:
        agent.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.debug)

    app_dir = get_app_dir(args.app_dir)
    if args.check:
        try:
            assert_runtime_ready(app_dir)
        except RuntimeError as exc:
            print(str(exc), file=sys.stderr)
            return 1
        print("staminaboot runtime is ready.")
        return 0

    try:
        config = load_config(args.config, app_dir=app_dir).launcher
    except ConfigError as exc:
        LOGGER.error(str(exc))
        return 1
    if args.source is not None:
        config.source = args.source
    LOGGER.debug(f"Starting staminaboot {__version__} in {app_dir}")

    if args.clean:
        _clean_cache(app_dir)

    package = bootstrap_package_path(app_dir)
    if not package.exists():
        launcher_id = load_launcher_id(launcher_settings_path(app_dir))
        try:
            urls = _package_urls(config)
        except KeyboardInterrupt:
            LOGGER.info("Bootstrap package discovery interrupted")
            return 1
        except OSError as exc:
            LOGGER.error(
                f"Cannot listen for bootstrap adverts on {config.bind_address}: {exc}"
            )
            return 1
        try:
            download_first(urls, package, launcher_id=launcher_id)
        except KeyboardInterrupt:
            LOGGER.info("Bootstrap package download interrupted")
            return 1
        except (OSError, ValueError) as exc:
            LOGGER.error(f"Failed to download bootstrap package: {exc}")
            return 1

    provisioning = _open_package(package)
    if provisioning is None:
        return 1

    runtime_exited = threading.Event()

    def on_exit(status: ExitStatus | None) -> None:
        if status is not None:
            LOGGER.debug(f"Runtime exit status: {status.exit_code}")
        runtime_exited.set()

    agent = Agent(provisioning, app_dir, init_dir=config.init_dir, on_exit=on_exit)
    return _run_agent(agent, runtime_exited)


if __name__ == "__main__":
    raise SystemExit(main())
