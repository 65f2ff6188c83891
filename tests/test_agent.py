from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest

from conftest import write_templates
from staminaboot.agent import Agent
from staminaboot.builder import build_package
from staminaboot.installer import INIT_CONF_NAME, InstallError
from staminaboot.provisioning import open_provisioning
from staminaboot.runtime_paths import bootstrap_package_path, runtime_dir, runtime_installed_marker
from staminaboot.supervisor import ExitKind


def _provisioning(tmp_path: Path, app_dir: Path, launcher_script: str = "#!/bin/sh\nexit 0\n"):
    templates = write_templates(tmp_path / "templates", launcher_script)
    package = build_package(bootstrap_package_path(app_dir), templates_dir=templates)
    return open_provisioning(package)


def test_ensure_runtime_installs_once(tmp_path: Path) -> None:
    app_dir = tmp_path / "app"
    agent = Agent(_provisioning(tmp_path, app_dir), app_dir, platform="linux")

    runtime = agent.ensure_runtime()

    assert runtime == runtime_dir(app_dir)
    assert runtime_installed_marker(app_dir).exists()
    assert (runtime / "bin" / "stamina").exists()

    (runtime / "etc" / "system.properties").unlink()
    agent.ensure_runtime()
    assert not (runtime / "etc" / "system.properties").exists()


def test_ensure_runtime_writes_init_conf(tmp_path: Path) -> None:
    app_dir = tmp_path / "app"
    init_dir = tmp_path / "init"
    agent = Agent(_provisioning(tmp_path, app_dir), app_dir, init_dir=init_dir, platform="linux")

    runtime = agent.ensure_runtime()

    assert (runtime / "etc" / INIT_CONF_NAME).exists()


def test_failed_install_leaves_no_marker(tmp_path: Path) -> None:
    app_dir = tmp_path / "app"
    agent = Agent({}, app_dir, platform="linux")

    with pytest.raises(InstallError, match="Missing runtime image"):
        agent.ensure_runtime()
    assert not runtime_installed_marker(app_dir).exists()


@pytest.mark.skipif(os.name == "nt", reason="mock launcher is a POSIX shell script")
@pytest.mark.integration
def test_start_runs_runtime_until_exit(tmp_path: Path) -> None:
    app_dir = tmp_path / "app"
    exited = threading.Event()
    statuses = []

    def on_exit(status) -> None:
        statuses.append(status)
        exited.set()

    agent = Agent(
        _provisioning(tmp_path, app_dir, "#!/bin/sh\nexit 7\n"),
        app_dir,
        on_exit=on_exit,
        restart_delay_s=0,
    )
    supervisor = agent.start()

    assert exited.wait(10)
    agent.stop()
    assert supervisor.launch_count == 1
    assert statuses[0].kind is ExitKind.TERMINAL
    assert statuses[0].exit_code == 7
