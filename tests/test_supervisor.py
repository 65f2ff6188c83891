from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from staminaboot.supervisor import (
    RESTART_EXIT_CODE,
    ExitKind,
    ExitStatus,
    ProcessSupervisor,
    interpret_exit_code,
)

posix_only = pytest.mark.skipif(os.name == "nt", reason="mock launcher is a POSIX shell script")

RESTARTING_LAUNCHER = """#!/bin/sh
count=$(cat launches 2>/dev/null || echo 0)
count=$((count + 1))
echo "$count" > launches
if [ "$count" -lt {restarts_plus_one} ]; then
    exit 100
fi
exit {final_code}
"""


def _write_launcher(runtime: Path, script: str) -> Path:
    launcher = runtime / "bin" / "stamina"
    launcher.parent.mkdir(parents=True, exist_ok=True)
    launcher.write_text(script, encoding="utf-8")
    launcher.chmod(0o755)
    return launcher


def test_interpret_exit_code() -> None:
    assert interpret_exit_code(RESTART_EXIT_CODE) == ExitStatus(ExitKind.RESTART_REQUESTED, 100)
    assert interpret_exit_code(0) == ExitStatus(ExitKind.TERMINAL, 0)
    assert interpret_exit_code(1).kind is ExitKind.TERMINAL
    assert interpret_exit_code(-15).kind is ExitKind.TERMINAL
    assert interpret_exit_code(100).restart_requested
    assert not interpret_exit_code(101).restart_requested


def test_start_without_launcher(tmp_path: Path) -> None:
    supervisor = ProcessSupervisor(tmp_path / "runtime", platform="linux")

    with pytest.raises(RuntimeError, match="Runtime launcher not found"):
        supervisor.start()
    assert supervisor.launch_count == 0


def test_windows_launcher_is_a_batch_file(tmp_path: Path) -> None:
    runtime = tmp_path / "runtime"
    _write_launcher(runtime, "#!/bin/sh\nexit 0\n")

    with pytest.raises(RuntimeError, match="stamina.bat"):
        ProcessSupervisor(runtime, platform="win32").start()


def test_negative_restart_delay(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="restart_delay_s"):
        ProcessSupervisor(tmp_path, restart_delay_s=-1)


@posix_only
@pytest.mark.integration
def test_restart_requests_are_honoured(tmp_path: Path) -> None:
    runtime = tmp_path / "runtime"
    _write_launcher(runtime, RESTARTING_LAUNCHER.format(restarts_plus_one=3, final_code=0))
    statuses: list[ExitStatus | None] = []
    done = threading.Event()

    def on_exit(status: ExitStatus | None) -> None:
        statuses.append(status)
        done.set()

    supervisor = ProcessSupervisor(runtime, on_exit=on_exit, restart_delay_s=0)
    supervisor.start()

    assert done.wait(10)
    assert supervisor.wait(5)
    assert supervisor.launch_count == 3
    assert (runtime / "launches").read_text(encoding="utf-8").strip() == "3"
    assert statuses == [ExitStatus(ExitKind.TERMINAL, 0)]


@posix_only
@pytest.mark.integration
def test_terminal_exit_code_ends_supervision(tmp_path: Path) -> None:
    runtime = tmp_path / "runtime"
    _write_launcher(runtime, "#!/bin/sh\nexit 3\n")
    statuses: list[ExitStatus | None] = []

    supervisor = ProcessSupervisor(runtime, on_exit=statuses.append, restart_delay_s=0)
    supervisor.start()

    assert supervisor.wait(10)
    assert supervisor.launch_count == 1
    assert supervisor.last_status == ExitStatus(ExitKind.TERMINAL, 3)
    assert statuses == [ExitStatus(ExitKind.TERMINAL, 3)]


@posix_only
@pytest.mark.integration
def test_stop_terminates_runtime_without_exit_callback(tmp_path: Path) -> None:
    runtime = tmp_path / "runtime"
    _write_launcher(runtime, "#!/bin/sh\ntouch started\nexec sleep 30\n")
    statuses: list[ExitStatus | None] = []

    supervisor = ProcessSupervisor(runtime, on_exit=statuses.append)
    supervisor.start()
    deadline = time.monotonic() + 5
    while not (runtime / "started").exists() and time.monotonic() < deadline:
        time.sleep(0.05)

    supervisor.stop()

    assert supervisor.wait(1)
    assert not supervisor.is_running
    assert supervisor.launch_count == 1
    assert statuses == []
