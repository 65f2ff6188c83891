"""Supervise the installed runtime as a child process."""

from __future__ import annotations

import enum
import subprocess
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from .log import get_logger
from .preflight import find_launcher, launcher_relative_path

LOGGER = get_logger(__name__)

RESTART_EXIT_CODE = 100

_RESTART_DELAY_S = 1.0
_TERMINATE_TIMEOUT_S = 5.0
_KILL_TIMEOUT_S = 2.0
_JOIN_TIMEOUT_S = 10.0


class ExitKind(enum.Enum):
    RESTART_REQUESTED = "restart-requested"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class ExitStatus:
    kind: ExitKind
    exit_code: int

    @property
    def restart_requested(self) -> bool:
        return self.kind is ExitKind.RESTART_REQUESTED


def interpret_exit_code(exit_code: int) -> ExitStatus:
    """Translate a raw child exit status into a supervision decision."""
    if exit_code == RESTART_EXIT_CODE:
        return ExitStatus(ExitKind.RESTART_REQUESTED, exit_code)
    return ExitStatus(ExitKind.TERMINAL, exit_code)


class ProcessSupervisor:
    """Run the runtime launcher and relaunch it when it asks to be restarted.

    Supervision ends on any other exit status. Unless ``stop()`` was called,
    ``on_exit`` then receives the final status so the hosting process can
    shut down with its runtime.
    """

    def __init__(
        self,
        runtime_dir: str | Path,
        *,
        on_exit: Callable[[ExitStatus | None], None] | None = None,
        restart_delay_s: float = _RESTART_DELAY_S,
        platform: str = sys.platform,
    ):
        if restart_delay_s < 0:
            raise ValueError("`restart_delay_s` must not be negative.")
        self.runtime_dir = Path(runtime_dir)
        self.platform = platform
        self.restart_delay_s = restart_delay_s
        self.launch_count = 0
        self.last_status: ExitStatus | None = None
        self._on_exit = on_exit
        self._stopping = threading.Event()
        self._process_lock = threading.Lock()
        self._process: subprocess.Popen | None = None
        self._worker: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def __enter__(self) -> "ProcessSupervisor":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
        return None

    def start(self) -> None:
        if self.is_running:
            return

        launcher = find_launcher(self.runtime_dir, self.platform)
        if launcher is None:
            raise RuntimeError(
                f"Runtime launcher not found: {self.runtime_dir / launcher_relative_path(self.platform)}"
            )

        self._stopping.clear()
        self._worker = threading.Thread(
            target=self._run,
            args=(launcher,),
            name="staminaboot-supervisor",
            daemon=True,
        )
        self._worker.start()

    def wait(self, timeout_s: float | None = None) -> bool:
        """Block until supervision ends; return False if still running."""
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout=timeout_s)
        return not worker.is_alive()

    def stop(self, *, timeout_s: float = _JOIN_TIMEOUT_S) -> None:
        self._stopping.set()
        with self._process_lock:
            process = self._process
        if process is not None:
            self._terminate(process)

        worker = self._worker
        if worker is None:
            return
        if worker is not threading.current_thread():
            worker.join(timeout=timeout_s)
            if worker.is_alive():
                LOGGER.warning("Runtime supervisor did not stop in time")
        self._worker = None

    def _spawn(self, launcher: Path) -> subprocess.Popen:
        return subprocess.Popen([str(launcher)], cwd=str(self.runtime_dir))

    def _run(self, launcher: Path) -> None:
        status: ExitStatus | None = None
        try:
            while not self._stopping.is_set():
                LOGGER.info("Starting runtime")
                with self._process_lock:
                    if self._stopping.is_set():
                        break
                    self._process = self._spawn(launcher)
                    self.launch_count += 1
                    process = self._process

                status = interpret_exit_code(process.wait())
                self.last_status = status
                with self._process_lock:
                    self._process = None

                if not status.restart_requested:
                    LOGGER.info(f"Runtime exited with status {status.exit_code}")
                    break
                LOGGER.info("Restarting runtime")
                if self._stopping.wait(self.restart_delay_s):
                    break
        except OSError as exc:
            LOGGER.error(f"Error while starting runtime: {exc}")
        finally:
            with self._process_lock:
                self._process = None

        LOGGER.info("Runtime exit")
        if self._stopping.is_set():
            return
        if self._on_exit is not None:
            self._on_exit(status)

    @staticmethod
    def _terminate(process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=_TERMINATE_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait(timeout=_KILL_TIMEOUT_S)
