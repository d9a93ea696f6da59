"""
Pytest configuration and fixtures: in-memory stand-ins for the service
manager, the process table, external commands and SSH.
"""
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from mole.core.constants import TUNNEL_TAG_ENV
from mole.core.exceptions import ExternalActionFailedError
from mole.core.interfaces import (
    CommandResult,
    CommandRunner,
    ConnectionFactory,
    PlatformActuator,
    ProcessInfo,
    ProcessTable,
)
from mole.core.settings import Settings
from mole.core.telemetry import get_telemetry
from mole.domain.credentials import CredentialStore
from mole.domain.diagnostics import DiagnosticAggregator
from mole.domain.tunnel import ServiceDescriptor, TunnelEndpoint, TunnelSupervisor
from mole.infrastructure.platform import render_plist
from mole.infrastructure.state import FileEndpointStore


class FakeProcessTable(ProcessTable):
    """Process table backed by a dict; processes carry a tag and may hide their environment"""

    def __init__(self):
        self.procs: Dict[int, dict] = {}
        self.unkillable: set = set()
        self.terminated: List[int] = []
        self._next_pid = 1000

    def spawn(self, tag: str, name: str, cmdline: Optional[List[str]] = None, env_readable: bool = True) -> int:
        self._next_pid += 1
        pid = self._next_pid
        self.procs[pid] = {
            "tag": tag,
            "info": ProcessInfo(pid=pid, name=name, cmdline=list(cmdline or [name])),
            "env_readable": env_readable,
        }
        return pid

    def kill(self, pid: int) -> None:
        self.procs.pop(pid, None)

    def kill_named(self, tag: str, name: str) -> None:
        for pid, proc in list(self.procs.items()):
            if proc["tag"] == tag and proc["info"].name == name:
                del self.procs[pid]

    def kill_tagged(self, tag: str) -> None:
        for pid, proc in list(self.procs.items()):
            if proc["tag"] == tag:
                del self.procs[pid]

    def names(self, tag: str) -> List[str]:
        return sorted(p["info"].name for p in self.procs.values() if p["tag"] == tag)

    def scan(self, tag: str, fallback_pattern: Optional[str] = None) -> List[ProcessInfo]:
        found = []
        for proc in self.procs.values():
            if proc["env_readable"]:
                if proc["tag"] == tag:
                    found.append(proc["info"])
            elif fallback_pattern and fallback_pattern in " ".join(proc["info"].cmdline):
                found.append(proc["info"])
        return found

    def terminate(self, pids: Sequence[int], grace: float = 1.0) -> List[int]:
        survivors = []
        for pid in pids:
            if pid in self.unkillable:
                survivors.append(pid)
                continue
            if pid in self.procs:
                self.terminated.append(pid)
                del self.procs[pid]
        return sorted(survivors)


class FakeActuator(PlatformActuator):
    """
    Service manager double.

    start() spawns the process tree described by the registration:
    - "full": sleep wrapper, autossh and ssh
    - "wrapper": sleep wrapper and autossh, ssh never connects
    - "nothing": the job exits immediately
    stop() unloads and kills the tree unless leave_orphans is set.
    """

    def __init__(self, processes: FakeProcessTable, artifact_dir: Path):
        self.processes = processes
        self.artifact_dir = artifact_dir
        self.registrations: Dict[str, ServiceDescriptor] = {}
        self.loaded: set = set()
        self.mode = "full"
        self.leave_orphans = False
        self.fail_start = False
        self.fail_register = False
        self.calls: List[tuple] = []
        self.overlapping_transports = 0

    def artifact_path(self, label: str) -> Path:
        return self.artifact_dir / f"{label}.plist"

    def register(self, descriptor: ServiceDescriptor) -> Path:
        self.calls.append(("register", descriptor.label))
        if self.fail_register:
            raise ExternalActionFailedError(f"cannot write {self.artifact_path(descriptor.label)}")
        self.registrations[descriptor.label] = descriptor
        return self.artifact_path(descriptor.label)

    def deregister(self, label: str) -> bool:
        self.calls.append(("deregister", label))
        self.loaded.discard(label)
        return self.registrations.pop(label, None) is not None

    def start(self, label: str) -> None:
        self.calls.append(("start", label))
        if self.fail_start:
            raise ExternalActionFailedError(f"launchctl could not load {label}")
        descriptor = self.registrations[label]
        tag = descriptor.env[TUNNEL_TAG_ENV]
        if "ssh" in self.processes.names(tag):
            self.overlapping_transports += 1

        self.loaded.add(label)
        if self.mode == "nothing":
            return
        args = list(descriptor.program_arguments)
        wrapper = os.path.basename(args[0])
        autossh_index = next(i for i, a in enumerate(args) if os.path.basename(a) == "autossh")
        self.processes.spawn(tag, wrapper, args)
        self.processes.spawn(tag, "autossh", args[autossh_index:])
        if self.mode == "full":
            self.processes.spawn(tag, "ssh", ["ssh"] + args[autossh_index + 1:])

    def stop(self, label: str) -> None:
        self.calls.append(("stop", label))
        self.loaded.discard(label)
        descriptor = self.registrations.get(label)
        if descriptor and not self.leave_orphans:
            self.processes.kill_tagged(descriptor.env[TUNNEL_TAG_ENV])

    def is_alive(self, label: str) -> bool:
        return label in self.loaded

    def is_registered(self, label: str) -> bool:
        return label in self.registrations

    def read_registration(self, label: str):
        descriptor = self.registrations.get(label)
        return render_plist(descriptor) if descriptor else None


class FakeRunner(CommandRunner):
    """
    Records commands. Canned results are looked up by command prefix in
    responses; cat/tee/cp/rm otherwise act on real files so sshd_config
    edits can be inspected, and everything else succeeds.
    """

    def __init__(self, available: Sequence[str] = ()):
        self.available = set(available)
        self.commands: List[List[str]] = []
        self.sudo_commands: List[List[str]] = []
        self.responses: Dict[str, CommandResult] = {}

    def run(self, argv, check=True, sudo=False, input=None) -> CommandResult:
        argv = list(argv)
        self.commands.append(argv)
        if sudo:
            self.sudo_commands.append(argv)

        key = " ".join(argv)
        for prefix, result in self.responses.items():
            if key.startswith(prefix):
                if check and not result.ok:
                    raise ExternalActionFailedError(
                        f"Command failed ({result.returncode}): {key}",
                        command=argv, returncode=result.returncode, stderr=result.stderr,
                    )
                return result

        program = argv[0]
        if program == "cat":
            return CommandResult(argv, 0, stdout=Path(argv[1]).read_text(encoding="utf-8"))
        if program == "tee":
            Path(argv[1]).write_text(input or "", encoding="utf-8")
            return CommandResult(argv, 0, stdout=input or "")
        if program == "cp":
            shutil.copy2(argv[-2], argv[-1])
            return CommandResult(argv, 0)
        if program == "rm":
            Path(argv[-1]).unlink(missing_ok=True)
            return CommandResult(argv, 0)
        return CommandResult(argv, 0)

    def which(self, program: str) -> Optional[str]:
        return f"/usr/bin/{program}" if program in self.available else None

    def ran(self, *prefix: str) -> bool:
        return any(cmd[:len(prefix)] == list(prefix) for cmd in self.commands)


class FakeClient:
    def __init__(self, output: str = "SSH OK\n", code: int = 0):
        self.output = output
        self.code = code
        self.commands: List[str] = []

    def exec_with_code(self, cmd: str):
        self.commands.append(cmd)
        return self.output, "", self.code

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FakeConnectionFactory(ConnectionFactory):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.params: List[dict] = []
        self.client = FakeClient()

    def create(self, params):
        self.params.append(dict(params))
        if self.fail:
            raise ExternalActionFailedError(f"Cannot SSH to {params['user']}@{params['host']}")
        return self.client


class FakeClock:
    """Monotonic clock advanced only by sleep()"""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def __call__(self) -> float:
        return self.now


@pytest.fixture(autouse=True)
def clear_telemetry():
    get_telemetry().clear()
    yield
    get_telemetry().clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        key_dir=tmp_path / "keys",
        authorized_keys=tmp_path / "ssh" / "authorized_keys",
        state_dir=tmp_path / "state",
        log_dir=tmp_path / "logs",
        launch_agents_dir=tmp_path / "LaunchAgents",
        systemd_user_dir=tmp_path / "systemd",
        sshd_config=tmp_path / "sshd_config",
        platform="darwin",
        startup_wait=2.0,
        probe_timeout=10.0,
        probe_interval=1.0,
        stop_grace=0.0,
    )


@pytest.fixture
def processes() -> FakeProcessTable:
    return FakeProcessTable()


@pytest.fixture
def actuator(processes: FakeProcessTable, tmp_path: Path) -> FakeActuator:
    return FakeActuator(processes, tmp_path / "LaunchAgents")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def supervisor(settings, actuator, processes, clock) -> TunnelSupervisor:
    return TunnelSupervisor(
        settings,
        FileEndpointStore(settings.state_dir),
        actuator,
        processes,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def credentials(settings) -> CredentialStore:
    return CredentialStore(settings)


@pytest.fixture
def aggregator(settings, supervisor) -> DiagnosticAggregator:
    return DiagnosticAggregator(settings, supervisor, reachable=lambda host, port: True)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner(available=("brew", "ufw", "systemctl"))


@pytest.fixture
def connection_factory() -> FakeConnectionFactory:
    return FakeConnectionFactory()


@pytest.fixture
def endpoint() -> TunnelEndpoint:
    return TunnelEndpoint(
        remote_host="gw.example",
        remote_user="ubuntu",
        name="laptop",
        remote_bind_port=2222,
        local_target_port=22,
    )
