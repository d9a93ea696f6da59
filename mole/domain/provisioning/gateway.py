"""
Gateway host provisioning

Forwarded tunnel ports must only ever be bound to loopback on the gateway;
setup enforces 'GatewayPorts no' in sshd_config and never opens the tunnel
port in the firewall. Clients reach it through the gateway with ProxyJump or
an interactive mosh/ssh session.
"""
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ...core.constants import GATEWAY_PACKAGES, MOSH_PORT_START, MOSH_PORT_END
from ...core.exceptions import ExternalActionFailedError
from ...core.interfaces import CommandRunner
from ...core.logging import get_logger
from ...core.settings import Settings
from ...infrastructure.system.firewall import Firewall
from ...infrastructure.system.packages import PackageManager

logger = get_logger(__name__)

MOLE_MARKER = "# mole: remote forwards bound to loopback only"

_GATEWAY_PORTS = re.compile(r"^\s*GatewayPorts\s+(\S+)", re.IGNORECASE)
_MATCH = re.compile(r"^\s*Match\s", re.IGNORECASE)

StepCallback = Callable[[int, int, str], None]


def enforce_loopback_forwarding(text: str) -> Tuple[str, bool]:
    """
    Force 'GatewayPorts no' in global scope of an sshd_config.

    Existing global GatewayPorts settings are rewritten; if there is none a
    marked setting is inserted before the first Match block.

    Returns:
        (new text, changed)
    """
    lines = text.splitlines(keepends=True)
    changed = False
    found = False
    in_match = False

    for i, line in enumerate(lines):
        if _MATCH.match(line):
            in_match = True
        m = _GATEWAY_PORTS.match(line)
        if m and not in_match:
            found = True
            if m.group(1).lower() != "no":
                lines[i] = "GatewayPorts no\n"
                changed = True
        elif m and in_match and m.group(1).lower() != "no":
            # A Match block may re-enable it for some users
            lines[i] = re.sub(r"(GatewayPorts\s+)\S+", r"\1no", line, flags=re.IGNORECASE)
            changed = True

    if not found:
        insert_at = next((i for i, line in enumerate(lines) if _MATCH.match(line)), len(lines))
        if insert_at > 0 and not lines[insert_at - 1].endswith("\n"):
            lines[insert_at - 1] += "\n"
        lines[insert_at:insert_at] = [f"{MOLE_MARKER}\n", "GatewayPorts no\n"]
        changed = True

    return "".join(lines), changed


def remove_mole_setting(text: str) -> Tuple[str, bool]:
    """Drop the marked GatewayPorts setting inserted by enforce_loopback_forwarding"""
    lines = text.splitlines(keepends=True)
    out: List[str] = []
    skip_next = False
    changed = False
    for line in lines:
        if skip_next:
            skip_next = False
            if _GATEWAY_PORTS.match(line):
                continue
        if line.strip() == MOLE_MARKER:
            skip_next = True
            changed = True
            continue
        out.append(line)
    return "".join(out), changed


@dataclass
class GatewayOptions:
    tunnel_port: int
    mosh_port_start: int = MOSH_PORT_START
    mosh_port_end: int = MOSH_PORT_END
    install_packages: bool = True
    uninstall_packages: bool = False


class GatewayProvisioner:
    """Setup and teardown of the gateway host's sshd, firewall and packages"""

    def __init__(self, settings: Settings, runner: CommandRunner):
        self.sshd_config = settings.sshd_config
        self.runner = runner

    @property
    def backup_path(self) -> Path:
        return self.sshd_config.with_name(self.sshd_config.name + ".backup")

    # --------------------
    # sshd_config
    # --------------------
    def _read_config(self) -> str:
        return self.runner.run(["cat", str(self.sshd_config)], sudo=True).stdout

    def _write_config(self, text: str) -> None:
        self.runner.run(["tee", str(self.sshd_config)], sudo=True, input=text)

    def configure_sshd(self) -> bool:
        """Back up once, then enforce loopback-only forwarding. Returns whether the file changed."""
        if not self.backup_path.exists():
            self.runner.run(["cp", "-p", str(self.sshd_config), str(self.backup_path)], sudo=True)
            logger.info(f"Backed up {self.sshd_config} to {self.backup_path}")

        original = self._read_config()
        updated, changed = enforce_loopback_forwarding(original)
        if not changed:
            logger.info("GatewayPorts already restricted to loopback")
            return False

        self._write_config(updated)
        check = self.runner.run(["sshd", "-t", "-f", str(self.sshd_config)], check=False, sudo=True)
        if not check.ok and check.returncode != 127:
            self._write_config(original)
            raise ExternalActionFailedError(
                f"sshd rejected the updated {self.sshd_config}; the original was restored. "
                f"Run 'sudo sshd -t' to see the problem: {check.stderr.strip()}",
                command=check.argv,
                returncode=check.returncode,
                stderr=check.stderr,
            )
        logger.info("Set GatewayPorts no")
        return True

    def restore_sshd(self) -> str:
        if self.backup_path.exists():
            self.runner.run(["cp", "-p", str(self.backup_path), str(self.sshd_config)], sudo=True)
            self.runner.run(["rm", "-f", str(self.backup_path)], sudo=True)
            return f"Restored {self.sshd_config} from backup"

        updated, changed = remove_mole_setting(self._read_config())
        if changed:
            self._write_config(updated)
            return "Removed GatewayPorts setting"
        return "No GatewayPorts setting found to remove"

    def restart_ssh(self) -> None:
        if self.runner.which("systemctl"):
            units = self.runner.run(["systemctl", "list-units", "--type=service", "--all"], check=False)
            service = "ssh" if re.search(r"^\s*ssh\.service", units.stdout, re.MULTILINE) else "sshd"
            self.runner.run(["systemctl", "restart", service], sudo=True)
        else:
            result = self.runner.run(["service", "ssh", "restart"], check=False, sudo=True)
            if not result.ok:
                self.runner.run(["service", "sshd", "restart"], sudo=True)
        logger.info("Restarted SSH service")

    # --------------------
    # Orchestration
    # --------------------
    def setup(self, options: GatewayOptions, on_step: Optional[StepCallback] = None) -> List[str]:
        """
        Provision the gateway. Stops at the first failing step.

        Returns:
            Warnings for things the operator must do by hand
        """
        notify = on_step or (lambda *_: None)
        warnings: List[str] = []
        total = 4

        notify(1, total, "Installing mosh...")
        if options.install_packages:
            PackageManager.detect(self.runner, ("apt", "dnf", "yum")).install(GATEWAY_PACKAGES)

        notify(2, total, "Configuring SSH for loopback-only forwarding...")
        self.configure_sshd()

        notify(3, total, "Configuring firewall...")
        firewall = Firewall.detect(self.runner)
        if firewall is None:
            warnings.append(
                f"No firewall detected. Make sure UDP {options.mosh_port_start}-{options.mosh_port_end} "
                f"is open for mosh and TCP {options.tunnel_port} is NOT exposed"
            )
        else:
            firewall.allow(options.mosh_port_start, options.mosh_port_end, "udp", "Mosh UDP ports")
            firewall.reload()

        notify(4, total, "Restarting SSH service...")
        self.restart_ssh()
        return warnings

    def teardown(self, options: GatewayOptions, on_step: Optional[StepCallback] = None) -> List[str]:
        """Undo setup. Returns informational messages."""
        notify = on_step or (lambda *_: None)
        messages: List[str] = []
        total = 4

        notify(1, total, "Restoring SSH configuration...")
        messages.append(self.restore_sshd())

        notify(2, total, "Removing firewall rules...")
        firewall = Firewall.detect(self.runner)
        if firewall is None:
            messages.append("No firewall detected. Manually remove rules if needed")
        else:
            firewall.remove(options.mosh_port_start, options.mosh_port_end, "udp")
            # Older setups exposed the tunnel port; make sure it is closed
            firewall.remove(options.tunnel_port, options.tunnel_port, "tcp")
            firewall.reload()

        notify(3, total, "Checking mosh installation...")
        if options.uninstall_packages:
            if self.runner.which("mosh"):
                PackageManager.detect(self.runner, ("apt", "dnf", "yum")).uninstall(GATEWAY_PACKAGES)
                messages.append("Mosh uninstalled")
            else:
                messages.append("Mosh not installed")
        else:
            messages.append("Mosh kept installed (use --uninstall-mosh to remove)")

        notify(4, total, "Restarting SSH service...")
        self.restart_ssh()
        return messages
