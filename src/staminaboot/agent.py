"""Bootstrap agent: install the runtime once, then keep it running."""

from __future__ import annotations

import sys
from collections.abc import Callable, Mapping
from pathlib import Path

from .installer import install_runtime, write_init_conf
from .log import get_logger
from .preflight import check_runtime
from .supervisor import ExitStatus, ProcessSupervisor

LOGGER = get_logger(__name__)


class Agent:
    """Own the runtime installation under ``app_dir`` and its supervisor.

    Only one agent may manage a given app dir at a time.
    """

    def __init__(
        self,
        provisioning: Mapping[str, object],
        app_dir: str | Path,
        *,
        init_dir: str | Path | None = None,
        on_exit: Callable[[ExitStatus | None], None] | None = None,
        restart_delay_s: float = 1.0,
        platform: str = sys.platform,
    ):
        self.provisioning = provisioning
        self.app_dir = Path(app_dir)
        self.init_dir = init_dir
        self.platform = platform
        self._on_exit = on_exit
        self._restart_delay_s = restart_delay_s
        self.supervisor: ProcessSupervisor | None = None

    def ensure_runtime(self) -> Path:
        """Install the runtime unless a completed installation exists."""
        check = check_runtime(self.app_dir, self.platform)
        if check.installed:
            LOGGER.debug("Using existing runtime")
            return check.runtime_dir

        LOGGER.debug("No runtime found: installing new one")
        install_runtime(self.provisioning, check.runtime_dir, platform=self.platform)
        if self.init_dir is not None:
            write_init_conf(check.runtime_dir, self.init_dir)
        LOGGER.debug("Runtime successfully installed")

        check.marker_path.parent.mkdir(parents=True, exist_ok=True)
        check.marker_path.touch()
        return check.runtime_dir

    def start(self) -> ProcessSupervisor:
        runtime = self.ensure_runtime()
        self.supervisor = ProcessSupervisor(
            runtime,
            on_exit=self._on_exit,
            restart_delay_s=self._restart_delay_s,
            platform=self.platform,
        )
        self.supervisor.start()
        return self.supervisor

    def stop(self) -> None:
        if self.supervisor is not None:
            self.supervisor.stop()
            self.supervisor = None
