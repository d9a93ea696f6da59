"""
Logging and console output

Log records go to stderr through a RichHandler (and optionally a plain log
file); reports, tables and step output go to the stdout console.
"""
import logging
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install as install_traceback

# Resolved against sys.stdout/sys.stderr at write time
_stdout_console = Console()
_stderr_console = Console(stderr=True)

install_traceback(show_locals=False, width=120)

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# paramiko logs every handshake at INFO
_NOISY_LOGGERS = ("paramiko",)


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: Union[str, int] = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Configure the root logger for one CLI invocation.

    Handlers installed by an earlier call are replaced, handlers installed
    by anything else are left alone.
    """
    log_level = _resolve_level(level)
    root = logging.getLogger()
    root.setLevel(log_level)

    for handler in [h for h in root.handlers if getattr(h, "_mole", False)]:
        root.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [
        RichHandler(
            console=_stderr_console,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    ]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(log_level)
        handler._mole = True
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(log_level if log_level <= logging.DEBUG else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_stdout_console() -> Console:
    """Console for user-facing output"""
    return _stdout_console


def get_stderr_console() -> Console:
    """Console for errors and log records"""
    return _stderr_console
