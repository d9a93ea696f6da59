"""
launchd actuator (macOS LaunchAgents)
"""
import os
import plistlib
from pathlib import Path
from typing import Dict, Any, Optional

from ...core.interfaces import PlatformActuator, CommandRunner
from ...core.exceptions import ExternalActionFailedError
from ...core.logging import get_logger
from ...domain.tunnel.models import ServiceDescriptor, RestartPolicy

logger = get_logger(__name__)


def render_plist(descriptor: ServiceDescriptor) -> Dict[str, Any]:
    """LaunchAgent property list for a descriptor"""
    keep_alive: Dict[str, Any] = {}
    if descriptor.require_network:
        keep_alive["NetworkState"] = True
    if descriptor.restart_policy == RestartPolicy.ON_FAILURE:
        keep_alive["SuccessfulExit"] = False

    return {
        "Label": descriptor.label,
        "ProgramArguments": list(descriptor.program_arguments),
        "EnvironmentVariables": descriptor.env,
        "RunAtLoad": descriptor.run_at_load,
        "KeepAlive": keep_alive or True,
        "StandardOutPath": str(descriptor.stdout_path),
        "StandardErrorPath": str(descriptor.stderr_path),
        "ThrottleInterval": descriptor.throttle_interval,
    }


class LaunchdActuator(PlatformActuator):
    """
    Registers tunnels as LaunchAgents.

    - register: write ~/Library/LaunchAgents/{label}.plist
    - start/stop: launchctl load/unload
    """

    def __init__(self, agents_dir: Path, runner: CommandRunner):
        self.agents_dir = Path(agents_dir).expanduser()
        self.runner = runner

    def artifact_path(self, label: str) -> Path:
        return self.agents_dir / f"{label}.plist"

    def register(self, descriptor: ServiceDescriptor) -> Path:
        path = self.artifact_path(descriptor.label)
        self.agents_dir.mkdir(parents=True, exist_ok=True)
        descriptor.stdout_path.parent.mkdir(parents=True, exist_ok=True)
        descriptor.stderr_path.parent.mkdir(parents=True, exist_ok=True)

        tmp = path.with_suffix(".plist.tmp")
        with open(tmp, "wb") as f:
            plistlib.dump(render_plist(descriptor), f)
        os.replace(tmp, path)

        logger.info(f"Created plist at {path}")
        return path

    def deregister(self, label: str) -> bool:
        path = self.artifact_path(label)
        if not path.exists():
            return False
        if self.is_alive(label):
            self.stop(label)
        path.unlink()
        logger.info(f"Removed {path}")
        return True

    def start(self, label: str) -> None:
        path = self.artifact_path(label)
        # Unload first so a stale loaded copy does not shadow the new artifact
        self.runner.run(["launchctl", "unload", str(path)], check=False)
        result = self.runner.run(["launchctl", "load", "-w", str(path)], check=False)
        if not result.ok or "error" in result.stderr.lower():
            raise ExternalActionFailedError(
                f"launchctl could not load {path}: {result.stderr.strip() or result.returncode}. "
                f"Check the plist with 'plutil -lint {path}'",
                command=result.argv,
                returncode=result.returncode,
                stderr=result.stderr,
            )

    def stop(self, label: str) -> None:
        path = self.artifact_path(label)
        if not self.is_alive(label):
            return
        result = self.runner.run(["launchctl", "unload", str(path)], check=False)
        if not result.ok:
            raise ExternalActionFailedError(
                f"launchctl could not unload {path}: {result.stderr.strip() or result.returncode}",
                command=result.argv,
                returncode=result.returncode,
                stderr=result.stderr,
            )

    def is_alive(self, label: str) -> bool:
        result = self.runner.run(["launchctl", "list", label], check=False)
        return result.ok

    def is_registered(self, label: str) -> bool:
        return self.artifact_path(label).exists()

    def read_registration(self, label: str) -> Optional[Dict[str, Any]]:
        path = self.artifact_path(label)
        if not path.exists():
            return None
        with open(path, "rb") as f:
            return plistlib.load(f)

    def last_exit_status(self, label: str) -> Optional[str]:
        """
        LastExitStatus reported by launchctl, None when not loaded.

        launchctl list <label> prints a dictionary; the key is absent while
        the job has not exited yet.
        """
        result = self.runner.run(["launchctl", "list", label], check=False)
        if not result.ok:
            return None
        for line in result.stdout.splitlines():
            line = line.strip()
            if line.startswith('"LastExitStatus"'):
                return line.split("=", 1)[1].strip().rstrip(";").strip()
        return "-"
