"""
Core infrastructure layer
"""
from .constants import *
from .exceptions import *
from .logging import setup_logging, get_logger, get_stdout_console, get_stderr_console
from .interfaces import (
    StateStore,
    PlatformActuator,
    ProcessTable,
    ProcessInfo,
    CommandRunner,
    CommandResult,
    ConnectionFactory,
    PromptProvider,
)
from .settings import Settings
from .telemetry import Telemetry, get_telemetry
from .utils import (
    load_ssh_config,
    validate_name,
    validate_port,
    tail_file,
    tcp_reachable,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "get_stdout_console",
    "get_stderr_console",
    "StateStore",
    "PlatformActuator",
    "ProcessTable",
    "ProcessInfo",
    "CommandRunner",
    "CommandResult",
    "ConnectionFactory",
    "PromptProvider",
    "Settings",
    "Telemetry",
    "get_telemetry",
    "load_ssh_config",
    "validate_name",
    "validate_port",
    "tail_file",
    "tcp_reachable",
]
