"""
Diagnostic aggregator - read-only status report for a tunnel endpoint

Every sub-check is independent: a failure downgrades that one field to
unknown/failed and the report is still produced. The verdict only looks at
registration and process liveness.
"""
import os
import re
import shlex
from typing import Any, Callable, Dict, List, Optional, Tuple

from ...core.constants import (
    DEFAULT_LOG_LINES,
    DEFAULT_SSH_PORT,
    INTERNET_PROBE_HOST,
    INTERNET_PROBE_PORT,
)
from ...core.logging import get_logger
from ...core.settings import Settings
from ...core.utils import tail_file, tcp_reachable
from ..tunnel.models import ProcessRole, TunnelEndpoint
from ..tunnel.supervisor import TunnelSupervisor
from .models import Check, CheckStatus, DiagnosticReport, LogTail, Verdict

logger = get_logger(__name__)

_REMOTE_RE = re.compile(r"^[A-Za-z0-9._-]+@[A-Za-z0-9._-]+$")
_SHELLS = ("sh", "bash", "zsh", "dash")

CAVEAT = (
    "Liveness is judged from the process table only: a running transport does "
    "not prove the gateway forwards traffic. Verify end to end with "
    "'ssh -J {remote} -p {port} localhost'."
)


def command_tokens(registration: Optional[Dict[str, Any]]) -> Optional[List[str]]:
    """
    Recover the command line from a registration artifact.

    Accepts a structured argv (launchd ProgramArguments), a shell-wrapped
    command string (/bin/sh -c "...") or an ExecStart string.
    """
    if not registration:
        return None

    args = registration.get("ProgramArguments")
    if isinstance(args, (list, tuple)) and args:
        tokens = [str(a) for a in args]
        if len(tokens) >= 3 and os.path.basename(tokens[0]) in _SHELLS and tokens[1] == "-c":
            return shlex.split(tokens[2])
        return tokens

    exec_start = registration.get("ExecStart")
    if isinstance(exec_start, str) and exec_start.strip():
        return shlex.split(exec_start.lstrip("-@+!:"))
    return None


def parse_binding(tokens: List[str]) -> Tuple[Optional[str], Optional[int], Optional[str], Optional[int]]:
    """
    Extract (-R spec, gateway bind port, user@host, ssh port) from a command line.

    Any field that cannot be found is None.
    """
    binding = None
    ssh_port = None
    remote = None

    for i, token in enumerate(tokens):
        if token == "-R" and i + 1 < len(tokens):
            binding = tokens[i + 1]
        elif token.startswith("-R") and len(token) > 2:
            binding = token[2:]
        elif token == "-p" and i + 1 < len(tokens) and tokens[i + 1].isdigit():
            ssh_port = int(tokens[i + 1])
        elif _REMOTE_RE.match(token):
            remote = token

    tunnel_port = None
    if binding:
        parts = binding.split(":")
        candidate = parts[1] if len(parts) == 4 else parts[0]
        if candidate.isdigit():
            tunnel_port = int(candidate)

    return binding, tunnel_port, remote, ssh_port


class DiagnosticAggregator:
    """Builds DiagnosticReports without mutating any state"""

    def __init__(
        self,
        settings: Settings,
        supervisor: TunnelSupervisor,
        reachable: Callable[[str, int], bool] = tcp_reachable,
    ):
        self.settings = settings
        self.supervisor = supervisor
        self._reachable = reachable

    def collect(self, name: str, log_lines: int = DEFAULT_LOG_LINES) -> DiagnosticReport:
        errors: Dict[str, str] = {}

        # Recorded endpoint
        endpoint: Optional[TunnelEndpoint] = None
        try:
            endpoint = self.supervisor.find(name)
        except Exception as e:
            errors["state"] = str(e)
        recorded_state = endpoint.state.value if endpoint else None
        label = endpoint.label if endpoint else self._label_for(name)

        # Registration
        registration = Check(CheckStatus.UNKNOWN)
        raw_registration = None
        try:
            path = self.supervisor.actuator.artifact_path(label)
            if self.supervisor.actuator.is_registered(label):
                registration = Check(CheckStatus.OK, f"Registration present: {path}")
                raw_registration = self.supervisor.actuator.read_registration(label)
            else:
                registration = Check(CheckStatus.FAIL, f"Registration not found: {path}")
        except Exception as e:
            errors["registration"] = str(e)
            registration = Check(CheckStatus.UNKNOWN, f"Could not check registration: {e}")

        # Service manager
        try:
            if self.supervisor.actuator.is_alive(label):
                service_loaded = Check(CheckStatus.OK, "Service is loaded")
            else:
                service_loaded = Check(CheckStatus.FAIL, "Service is not loaded")
        except Exception as e:
            errors["service"] = str(e)
            service_loaded = Check(CheckStatus.UNKNOWN, f"Could not query service manager: {e}")

        # Processes
        processes: Optional[Dict[ProcessRole, List[int]]] = None
        try:
            probe_target = endpoint or self._placeholder(name)
            processes = self.supervisor.scan_roles(probe_target)
        except Exception as e:
            errors["processes"] = str(e)

        # Binding from the registered descriptor
        binding = remote = None
        tunnel_port = ssh_port = None
        try:
            tokens = command_tokens(raw_registration)
            if tokens:
                binding, tunnel_port, remote, ssh_port = parse_binding(tokens)
        except Exception as e:
            errors["binding"] = str(e)
        if remote is None and endpoint:
            remote = endpoint.destination
        if tunnel_port is None and endpoint:
            tunnel_port = endpoint.remote_bind_port
        if ssh_port is None:
            ssh_port = endpoint.remote_ssh_port if endpoint else DEFAULT_SSH_PORT

        # Reachability
        internet = self._probe("internet", INTERNET_PROBE_HOST, INTERNET_PROBE_PORT, errors)
        if remote:
            gateway = self._probe("gateway", remote.split("@", 1)[1], ssh_port, errors)
        else:
            gateway = Check(CheckStatus.UNKNOWN, "Gateway unknown (no readable registration)")

        # Logs
        logs = [
            self._tail(stream, path, log_lines, errors)
            for stream, path in zip(("stdout", "stderr"), self.settings.endpoint_log_files(name))
        ]

        verdict = self.verdict(registration, processes)
        caveat = CAVEAT.format(remote=remote or "user@gateway", port=tunnel_port or "<port>")

        return DiagnosticReport(
            endpoint=name,
            recorded_state=recorded_state,
            registration=registration,
            service_loaded=service_loaded,
            processes=processes,
            binding=binding,
            tunnel_port=tunnel_port,
            remote=remote,
            internet=internet,
            gateway=gateway,
            logs=logs,
            verdict=verdict,
            caveat=caveat,
            errors=errors,
        )

    @staticmethod
    def verdict(registration: Check, processes: Optional[Dict[ProcessRole, List[int]]]) -> Verdict:
        # An unreadable registration leaves the verdict to process liveness
        if registration.status == CheckStatus.FAIL or not processes:
            return Verdict.DOWN
        alive = sum(1 for role in ProcessRole if processes.get(role))
        if alive == 0:
            return Verdict.DOWN
        if alive == len(ProcessRole):
            return Verdict.HEALTHY
        return Verdict.DEGRADED

    def _label_for(self, name: str) -> str:
        return self._placeholder(name).label

    @staticmethod
    def _placeholder(name: str) -> TunnelEndpoint:
        # Uninstalled endpoints still get scanned for stray tagged processes
        return TunnelEndpoint(remote_host="unknown", remote_user="unknown", name=name)

    def _probe(self, check: str, host: str, port: int, errors: Dict[str, str]) -> Check:
        try:
            if self._reachable(host, port):
                return Check(CheckStatus.OK, f"{host}:{port} reachable")
            return Check(CheckStatus.FAIL, f"{host}:{port} unreachable")
        except Exception as e:
            errors[check] = str(e)
            return Check(CheckStatus.UNKNOWN, f"Could not probe {host}:{port}: {e}")

    def _tail(self, stream: str, path, lines: int, errors: Dict[str, str]) -> LogTail:
        if not path.exists():
            return LogTail(stream=stream, path=path, present=False)
        try:
            tail, total = tail_file(path, lines)
            return LogTail(stream=stream, path=path, present=True, total_lines=total, lines=tail)
        except OSError as e:
            errors[f"log.{stream}"] = str(e)
            return LogTail(stream=stream, path=path, present=True, error=str(e))
