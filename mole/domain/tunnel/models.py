"""
Tunnel domain models
"""
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple
import shlex
import time

from ...core.constants import (
    DEFAULT_ENDPOINT_NAME,
    DEFAULT_SSH_PORT,
    DEFAULT_REMOTE_BIND_PORT,
    DEFAULT_REMOTE_BIND_ADDRESS,
    DEFAULT_LOCAL_TARGET_HOST,
    DEFAULT_LOCAL_TARGET_PORT,
    DEFAULT_KEEPALIVE_INTERVAL,
    DEFAULT_KEEPALIVE_RETRIES,
    DEFAULT_THROTTLE_INTERVAL,
    DEFAULT_RESTART_POLICY,
    LABEL_PREFIX,
)
from ...core.exceptions import ConfigError
from ...core.utils import validate_name, validate_port


class TunnelState(str, Enum):
    """Lifecycle states of a tunnel endpoint"""
    UNINSTALLED = "uninstalled"
    STOPPED = "stopped"
    STARTING = "starting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    FAILED = "failed"


_ACTIVE = (TunnelState.STARTING, TunnelState.CONNECTED, TunnelState.DEGRADED)

# Allowed transitions; staying in the same state is always allowed
TRANSITIONS: Dict[TunnelState, Tuple[TunnelState, ...]] = {
    TunnelState.UNINSTALLED: (TunnelState.STOPPED,),
    TunnelState.STOPPED: (TunnelState.STARTING, TunnelState.UNINSTALLED, TunnelState.FAILED),
    TunnelState.STARTING: (TunnelState.CONNECTED, TunnelState.STOPPED, TunnelState.FAILED),
    TunnelState.CONNECTED: (TunnelState.DEGRADED, TunnelState.STOPPED, TunnelState.FAILED),
    TunnelState.DEGRADED: (TunnelState.CONNECTED, TunnelState.STOPPED, TunnelState.FAILED),
    TunnelState.FAILED: (TunnelState.STOPPED,),
}


def is_active(state: TunnelState) -> bool:
    return state in _ACTIVE


class ProcessRole(str, Enum):
    """Roles in the supervised process tree"""
    RECONNECT = "reconnect"
    SLEEP_PREVENTION = "sleep_prevention"
    TRANSPORT = "transport"


class RestartPolicy(str, Enum):
    ALWAYS = "always"
    ON_FAILURE = "on-failure"


@dataclass
class TunnelEndpoint:
    """Tunnel endpoint configuration and recorded state"""
    remote_host: str
    remote_user: str
    name: str = DEFAULT_ENDPOINT_NAME
    remote_ssh_port: int = DEFAULT_SSH_PORT
    identity_file: Optional[str] = None
    remote_bind_port: int = DEFAULT_REMOTE_BIND_PORT
    local_target_host: str = DEFAULT_LOCAL_TARGET_HOST
    local_target_port: int = DEFAULT_LOCAL_TARGET_PORT
    keepalive_interval: int = DEFAULT_KEEPALIVE_INTERVAL
    keepalive_retries: int = DEFAULT_KEEPALIVE_RETRIES
    restart_policy: RestartPolicy = RestartPolicy(DEFAULT_RESTART_POLICY)
    throttle_interval: int = DEFAULT_THROTTLE_INTERVAL
    state: TunnelState = TunnelState.UNINSTALLED
    updated_at: float = field(default_factory=time.time)

    def __post_init__(self):
        self.restart_policy = RestartPolicy(self.restart_policy)
        self.state = TunnelState(self.state)

    def validate(self) -> None:
        """Validate configuration"""
        validate_name(self.name, "endpoint name")
        if not isinstance(self.remote_host, str) or not self.remote_host or any(c.isspace() for c in self.remote_host):
            raise ConfigError(f"Invalid remote_host: {self.remote_host!r}")
        if not isinstance(self.remote_user, str) or not self.remote_user or any(
            c.isspace() or c == "@" for c in self.remote_user
        ):
            raise ConfigError(f"Invalid remote_user: {self.remote_user!r}")
        validate_port(self.remote_ssh_port, "remote_ssh_port")
        validate_port(self.remote_bind_port, "remote_bind_port")
        validate_port(self.local_target_port, "local_target_port")
        for field_name, minimum in (("keepalive_interval", 1), ("keepalive_retries", 1), ("throttle_interval", 0)):
            value = getattr(self, field_name)
            if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
                raise ConfigError(f"Invalid {field_name}: {value!r}")

    @property
    def label(self) -> str:
        """Service manager label"""
        return f"{LABEL_PREFIX}.{self.name}"

    @property
    def destination(self) -> str:
        return f"{self.remote_user}@{self.remote_host}"

    @property
    def forward_spec(self) -> str:
        """-R argument; the gateway side is always bound to loopback"""
        return (
            f"{DEFAULT_REMOTE_BIND_ADDRESS}:{self.remote_bind_port}:"
            f"{self.local_target_host}:{self.local_target_port}"
        )

    def same_config(self, other: "TunnelEndpoint") -> bool:
        """Compare configuration, ignoring state"""
        return self.config_dict() == other.config_dict()

    def config_dict(self) -> Dict[str, Any]:
        data = self.to_dict()
        data.pop("state")
        data.pop("updated_at")
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        data = asdict(self)
        data["restart_policy"] = self.restart_policy.value
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TunnelEndpoint":
        """Create from dictionary"""
        return cls(**data)


@dataclass(frozen=True)
class ServiceDescriptor:
    """Declarative service registration record"""
    label: str
    program_arguments: Tuple[str, ...]
    environment: Tuple[Tuple[str, str], ...]
    restart_policy: RestartPolicy
    require_network: bool
    run_at_load: bool
    stdout_path: Path
    stderr_path: Path
    throttle_interval: int

    @property
    def env(self) -> Dict[str, str]:
        return dict(self.environment)

    @property
    def command_line(self) -> str:
        return shlex.join(self.program_arguments)


@dataclass
class Observation:
    """Point-in-time view of a tunnel's processes"""
    registered: bool
    loaded: bool
    pids: Dict[ProcessRole, List[int]] = field(default_factory=dict)

    def alive(self, role: ProcessRole) -> bool:
        return bool(self.pids.get(role))

    @property
    def any_alive(self) -> bool:
        return any(self.pids.values())

    @property
    def all_pids(self) -> List[int]:
        return sorted({pid for pids in self.pids.values() for pid in pids})


@dataclass
class ControlResult:
    """Outcome of a control command"""
    endpoint: str
    state: TunnelState
    changed: bool
    message: str
