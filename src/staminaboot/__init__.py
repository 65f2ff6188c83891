"""staminaboot package."""

__version__ = "0.1.0"

from .agent import Agent
from .builder import build_package
from .config import load_config
from .discovery import NetworkAdvertiser, NetworkProber
from .installer import install_runtime
from .preflight import assert_runtime_ready, check_runtime
from .provisioning import ProvisioningInformation, open_provisioning
from .runtime_paths import get_app_dir
from .supervisor import ExitKind, ExitStatus, ProcessSupervisor, interpret_exit_code

__all__ = [
    "Agent",
    "ExitKind",
    "ExitStatus",
    "NetworkAdvertiser",
    "NetworkProber",
    "ProcessSupervisor",
    "ProvisioningInformation",
    "__version__",
    "assert_runtime_ready",
    "build_package",
    "check_runtime",
    "get_app_dir",
    "install_runtime",
    "interpret_exit_code",
    "load_config",
    "open_provisioning",
]
