"""
Runtime settings passed explicitly to every component
"""
import platform
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

from .constants import (
    DEFAULT_KEY_DIR,
    AUTHORIZED_KEYS_PATH,
    DEFAULT_STATE_DIR,
    DEFAULT_LOG_DIR,
    LAUNCH_AGENTS_DIR,
    SYSTEMD_USER_DIR,
    DEFAULT_STARTUP_WAIT,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_PROBE_INTERVAL,
    DEFAULT_STOP_GRACE,
    SSHD_CONFIG_PATH,
)
from .exceptions import ConfigError


def _default_platform() -> str:
    return "darwin" if platform.system() == "Darwin" else "linux"


def default_sleep_wrapper(platform_name: str) -> Tuple[str, ...]:
    """Sleep-prevention wrapper argv prefix for a platform"""
    if platform_name == "darwin":
        return ("caffeinate", "-s")
    return ("systemd-inhibit", "--what=sleep:idle", "--why=mole tunnel")


@dataclass
class Settings:
    """
    Paths, binaries and timing used by the supervisor and the stores.

    Built once from the merged configuration and handed to constructors.
    """
    key_dir: Path = field(default_factory=lambda: Path(DEFAULT_KEY_DIR).expanduser())
    authorized_keys: Path = field(default_factory=lambda: Path(AUTHORIZED_KEYS_PATH).expanduser())
    state_dir: Path = field(default_factory=lambda: Path(DEFAULT_STATE_DIR).expanduser())
    log_dir: Path = field(default_factory=lambda: Path(DEFAULT_LOG_DIR))
    launch_agents_dir: Path = field(default_factory=lambda: Path(LAUNCH_AGENTS_DIR).expanduser())
    systemd_user_dir: Path = field(default_factory=lambda: Path(SYSTEMD_USER_DIR).expanduser())
    sshd_config: Path = field(default_factory=lambda: Path(SSHD_CONFIG_PATH))
    platform: str = field(default_factory=_default_platform)
    autossh_path: str = "autossh"
    sleep_wrapper: Tuple[str, ...] = ()
    startup_wait: float = DEFAULT_STARTUP_WAIT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    probe_interval: float = DEFAULT_PROBE_INTERVAL
    stop_grace: float = DEFAULT_STOP_GRACE

    def __post_init__(self):
        if self.platform not in ("darwin", "linux"):
            raise ConfigError(f"Unsupported platform: {self.platform}, must be 'darwin' or 'linux'")
        if not self.sleep_wrapper:
            self.sleep_wrapper = default_sleep_wrapper(self.platform)
        self.sleep_wrapper = tuple(self.sleep_wrapper)
        for name in ("key_dir", "authorized_keys", "state_dir", "log_dir",
                     "launch_agents_dir", "systemd_user_dir", "sshd_config"):
            setattr(self, name, Path(getattr(self, name)).expanduser())
        for name in ("startup_wait", "probe_timeout", "probe_interval", "stop_grace"):
            if float(getattr(self, name)) < 0:
                raise ConfigError(f"Invalid {name}: {getattr(self, name)}")

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "Settings":
        """Create from the [paths]/[supervisor] sections of a merged config"""
        cfg = cfg or {}
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for section in ("paths", "supervisor"):
            for key, value in (cfg.get(section) or {}).items():
                if value is None:
                    continue
                if key not in known:
                    raise ConfigError(f"Unknown setting '{section}.{key}'")
                values[key] = value
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with some fields replaced"""
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if "platform" in overrides and "sleep_wrapper" not in overrides:
            overrides["sleep_wrapper"] = ()
        return replace(self, **overrides)

    def endpoint_log_files(self, name: str) -> Tuple[Path, Path]:
        """(stdout, stderr) log paths for an endpoint"""
        return self.log_dir / f"{name}.log", self.log_dir / f"{name}.err"
