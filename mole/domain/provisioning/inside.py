"""
Inside host provisioning - sequences package install, access check,
credential issuance, service registration and start.
"""
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ...core.constants import INSIDE_HOST_PACKAGES
from ...core.exceptions import CredentialExistsError
from ...core.interfaces import CommandRunner, ConnectionFactory
from ...core.logging import get_logger
from ...core.settings import Settings
from ...core.utils import validate_name
from ...infrastructure.ssh.client import verify_access
from ...infrastructure.system.packages import PackageManager
from ..credentials.models import ClientCredential
from ..credentials.store import CredentialStore
from ..tunnel.models import ControlResult, TunnelEndpoint
from ..tunnel.supervisor import TunnelSupervisor

logger = get_logger(__name__)

StepCallback = Callable[[int, int, str], None]
InfoCallback = Callable[[str], None]


@dataclass
class SetupRequest:
    endpoint: TunnelEndpoint
    clients: List[str]
    passphrase: Optional[str] = None
    install_packages: bool = True
    verify_ssh: bool = True
    start: bool = True


@dataclass
class SetupOutcome:
    credentials: List[ClientCredential] = field(default_factory=list)
    install: Optional[ControlResult] = None
    start: Optional[ControlResult] = None


@dataclass
class TeardownRequest:
    name: str
    remove_keys: bool = False
    remove_auth: bool = False
    uninstall_tools: bool = False


class InsideHostProvisioner:
    """Setup and teardown of the tunnel on the inside host"""

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialStore,
        supervisor: TunnelSupervisor,
        runner: CommandRunner,
        connection_factory: ConnectionFactory,
    ):
        self.settings = settings
        self.credentials = credentials
        self.supervisor = supervisor
        self.runner = runner
        self.connection_factory = connection_factory

    def _package_manager(self) -> PackageManager:
        candidates = ("brew",) if self.settings.platform == "darwin" else ("apt", "dnf", "yum")
        return PackageManager.detect(self.runner, candidates)

    def setup(
        self,
        request: SetupRequest,
        on_step: Optional[StepCallback] = None,
        on_info: Optional[InfoCallback] = None,
    ) -> SetupOutcome:
        """
        Run every setup step in order, halting on the first fatal error.
        Re-running is safe: existing keys and authorizations are kept.
        """
        notify = on_step or (lambda *_: None)
        info = on_info or (lambda _: None)
        endpoint = request.endpoint
        endpoint.validate()
        for name in request.clients:
            validate_name(name, "client name")

        outcome = SetupOutcome()
        total = 7

        notify(1, total, "Checking for package manager...")
        package_manager = self._package_manager() if request.install_packages else None
        if package_manager:
            info(f"{package_manager.name} found")
        else:
            info("Skipped")

        notify(2, total, f"Installing {' and '.join(INSIDE_HOST_PACKAGES)}...")
        if package_manager:
            if all(self.runner.which(p) for p in INSIDE_HOST_PACKAGES):
                info("Already installed")
            else:
                package_manager.install(INSIDE_HOST_PACKAGES)
                info(f"{' and '.join(INSIDE_HOST_PACKAGES)} installed")
        else:
            info("Skipped")

        notify(3, total, "Verifying SSH access to gateway...")
        if request.verify_ssh:
            verify_access(self.connection_factory, {
                "host": endpoint.remote_host,
                "user": endpoint.remote_user,
                "port": endpoint.remote_ssh_port,
                "key": endpoint.identity_file,
            })
            info("SSH access verified")
        else:
            info("Skipped")

        notify(4, total, "Generating client keys...")
        for name in request.clients:
            try:
                self.credentials.issue(name, request.passphrase)
                info(f"Generated: {name}")
            except CredentialExistsError:
                info(f"Skipping {name} (key already exists)")
            outcome.credentials.append(self.credentials.get(name))

        notify(5, total, "Adding client keys to authorized_keys...")
        for name in request.clients:
            if self.credentials.authorize(name):
                info(f"Added {name} to authorized_keys")
            else:
                info(f"{name} already in authorized_keys")

        notify(6, total, "Registering tunnel service...")
        outcome.install = self.supervisor.install(endpoint)
        info(outcome.install.message)

        notify(7, total, "Starting tunnel...")
        if request.start:
            outcome.start = self.supervisor.start(endpoint.name)
            info(outcome.start.message)
        else:
            info("Skipped")

        return outcome

    def teardown(
        self,
        request: TeardownRequest,
        on_step: Optional[StepCallback] = None,
        on_info: Optional[InfoCallback] = None,
    ) -> None:
        notify = on_step or (lambda *_: None)
        info = on_info or (lambda _: None)
        total = 4

        notify(1, total, "Stopping and removing tunnel service...")
        info(self.supervisor.uninstall(request.name).message)

        notify(2, total, "Processing client keys...")
        if request.remove_keys:
            if self.credentials.purge():
                info(f"Removed client keys directory: {self.credentials.key_dir}")
            else:
                info(f"No client keys directory found at {self.credentials.key_dir}")
        elif self.credentials.key_dir.exists():
            info(f"Client keys kept at {self.credentials.key_dir} (use --remove-keys to delete)")
        else:
            info("No client keys directory found")

        notify(3, total, "Processing authorized_keys...")
        authorization = self.credentials.authorization
        if request.remove_auth:
            removed = authorization.remove_all_tagged()
            info(f"Removed {removed} tunnel key(s) from authorized_keys" if removed
                 else "No tunnel keys found in authorized_keys")
        else:
            kept = authorization.count_tagged()
            if kept:
                info(f"Kept {kept} tunnel key(s) in authorized_keys (use --remove-auth to delete)")

        notify(4, total, "Processing tools...")
        if request.uninstall_tools:
            if self._package_manager().uninstall(INSIDE_HOST_PACKAGES):
                info(f"Uninstalled {' and '.join(INSIDE_HOST_PACKAGES)}")
            else:
                info(f"Could not uninstall {' and '.join(INSIDE_HOST_PACKAGES)}")
        else:
            info("Tools kept installed (use --uninstall-tools to remove)")
