"""
systemd user-instance actuator (Linux)
"""
import os
import shlex
from pathlib import Path
from typing import Dict, Any, Optional

from ...core.constants import NETWORK_WAIT_SECONDS
from ...core.interfaces import PlatformActuator, CommandRunner
from ...core.logging import get_logger
from ...domain.tunnel.models import ServiceDescriptor

logger = get_logger(__name__)


def network_wait_command(seconds: int = NETWORK_WAIT_SECONDS) -> str:
    """
    Shell loop that waits for a default route.

    The user manager has no network-online.target, so the wait runs in the
    unit itself. It gives up after `seconds`; the leading "-" on
    ExecStartPre lets autossh start anyway and keep retrying.
    """
    loop = (
        f"i=0; until ip route show default | grep -q .; do "
        f"[ $$i -ge {seconds} ] && exit 1; i=$$((i+1)); sleep 1; done"
    )
    return f"/bin/sh -c '{loop}'"


def render_unit(descriptor: ServiceDescriptor) -> str:
    """systemd unit file text for a descriptor"""
    unit = [
        "[Unit]",
        f"Description=mole reverse tunnel ({descriptor.label})",
    ]
    service = ["", "[Service]"]
    if descriptor.require_network:
        service.append(f"ExecStartPre=-{network_wait_command()}")
    service.append(f"ExecStart={shlex.join(descriptor.program_arguments)}")
    for key, value in descriptor.environment:
        service.append(f'Environment="{key}={value}"')
    service += [
        f"Restart={descriptor.restart_policy.value}",
        f"RestartSec={descriptor.throttle_interval}",
        f"StandardOutput=append:{descriptor.stdout_path}",
        f"StandardError=append:{descriptor.stderr_path}",
    ]

    install = ["", "[Install]", "WantedBy=default.target"] if descriptor.run_at_load else []
    return "\n".join(unit + service + install) + "\n"


def parse_unit(text: str) -> Dict[str, Any]:
    """Flatten a unit file into {key: value}; repeated keys become lists"""
    data: Dict[str, Any] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(("#", ";", "[")) or "=" not in line:
            continue
        key, value = line.split("=", 1)
        if key in data:
            existing = data[key]
            data[key] = (existing if isinstance(existing, list) else [existing]) + [value]
        else:
            data[key] = value
    return data


class SystemdUserActuator(PlatformActuator):
    """
    Registers tunnels as systemd --user services.

    - register: write ~/.config/systemd/user/{label}.service and daemon-reload
    - start/stop: systemctl --user enable --now / disable --now
    """

    def __init__(self, unit_dir: Path, runner: CommandRunner):
        self.unit_dir = Path(unit_dir).expanduser()
        self.runner = runner

    def _systemctl(self, *args: str, check: bool = True):
        return self.runner.run(["systemctl", "--user", *args], check=check)

    def _unit(self, label: str) -> str:
        return f"{label}.service"

    def artifact_path(self, label: str) -> Path:
        return self.unit_dir / self._unit(label)

    def register(self, descriptor: ServiceDescriptor) -> Path:
        path = self.artifact_path(descriptor.label)
        self.unit_dir.mkdir(parents=True, exist_ok=True)
        descriptor.stdout_path.parent.mkdir(parents=True, exist_ok=True)
        descriptor.stderr_path.parent.mkdir(parents=True, exist_ok=True)

        tmp = path.with_suffix(".service.tmp")
        tmp.write_text(render_unit(descriptor), encoding="utf-8")
        os.replace(tmp, path)
        self._systemctl("daemon-reload")

        logger.info(f"Created unit at {path}")
        return path

    def deregister(self, label: str) -> bool:
        path = self.artifact_path(label)
        if not path.exists():
            return False
        self.stop(label)
        path.unlink()
        self._systemctl("daemon-reload", check=False)
        logger.info(f"Removed {path}")
        return True

    def start(self, label: str) -> None:
        self._systemctl("enable", "--now", self._unit(label))

    def stop(self, label: str) -> None:
        self._systemctl("disable", "--now", self._unit(label), check=False)

    def is_alive(self, label: str) -> bool:
        return self._systemctl("is-active", "--quiet", self._unit(label), check=False).ok

    def is_registered(self, label: str) -> bool:
        return self.artifact_path(label).exists()

    def read_registration(self, label: str) -> Optional[Dict[str, Any]]:
        path = self.artifact_path(label)
        if not path.exists():
            return None
        return parse_unit(path.read_text(encoding="utf-8"))
