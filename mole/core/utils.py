"""
Core utility functions
"""
import re
import socket
from collections import deque
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import paramiko

from .constants import SSH_CONFIG_PATH, DEFAULT_SSH_PORT, REACHABILITY_TIMEOUT
from .exceptions import ConfigError


_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


# ============================================================
# SSH Config Management
# ============================================================

def load_ssh_config(hostname: str, config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration for specified Host from ~/.ssh/config.

    Args:
        hostname: Host name in SSH configuration
        config_path: Alternate config file

    Returns:
        Dictionary containing host, user, port, key_file

    Raises:
        ConfigError: If the config file doesn't exist
    """
    config_path = Path(config_path or SSH_CONFIG_PATH).expanduser()
    if not config_path.exists():
        raise ConfigError(f"{config_path} does not exist")

    ssh_config = paramiko.SSHConfig.from_path(str(config_path))
    entry = ssh_config.lookup(hostname)

    return {
        "host": entry.get("hostname", hostname),
        "user": entry.get("user", None),
        "port": int(entry.get("port", DEFAULT_SSH_PORT)),
        "key_file": entry.get("identityfile", [None])[0],
    }


# ============================================================
# Validation
# ============================================================

def validate_name(name: str, kind: str = "name") -> str:
    """Validate a client or endpoint name, return it unchanged"""
    if not name or not _NAME_RE.match(name):
        raise ConfigError(
            f"Invalid {kind}: {name!r} (use letters, digits, '.', '_' or '-', "
            "starting with a letter or digit)"
        )
    return name


def validate_port(port: int, kind: str = "port") -> int:
    """Validate a TCP port number"""
    if not isinstance(port, int) or isinstance(port, bool) or not (1 <= port <= 65535):
        raise ConfigError(f"Invalid {kind}: {port}")
    return port


# ============================================================
# Files
# ============================================================

def tail_file(path: Path, lines: int) -> Tuple[List[str], int]:
    """
    Read the last lines of a text file.

    Returns:
        (last lines, total line count)

    Raises:
        OSError: If the file cannot be read
    """
    total = 0
    window: deque = deque(maxlen=max(lines, 0))
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            total += 1
            window.append(line.rstrip("\n"))
    return list(window), total


# ============================================================
# Network
# ============================================================

def tcp_reachable(host: str, port: int, timeout: float = REACHABILITY_TIMEOUT) -> bool:
    """Open and close a TCP connection to host:port"""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False
