"""
Tunnel supervisor - lifecycle state machine per endpoint
"""
import os
import time
from typing import Callable, Dict, List, Optional, Tuple

from ...core.interfaces import StateStore, PlatformActuator, ProcessTable, ProcessInfo
from ...core.exceptions import (
    EndpointNotFoundError,
    ExternalActionFailedError,
    PreconditionFailedError,
    TunnelTimeoutError,
)
from ...core.logging import get_logger
from ...core.settings import Settings
from ...core.telemetry import get_telemetry
from .descriptor import ServiceDescriptorBuilder
from .models import (
    TRANSITIONS,
    ControlResult,
    Observation,
    ProcessRole,
    TunnelEndpoint,
    TunnelState,
    is_active,
)

logger = get_logger(__name__)
telemetry = get_telemetry()


class TunnelSupervisor:
    """
    Tunnel supervisor - install, start, stop, restart, reset, probe, uninstall.

    Persistence of the running tunnel is delegated to the platform service
    manager; the supervisor only configures it and observes the process
    table. Control commands are not safe to run concurrently for the same
    endpoint; callers serialize them.
    """

    def __init__(
        self,
        settings: Settings,
        store: StateStore,
        actuator: PlatformActuator,
        processes: ProcessTable,
        builder: Optional[ServiceDescriptorBuilder] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.store = store
        self.actuator = actuator
        self.processes = processes
        self.builder = builder or ServiceDescriptorBuilder(settings)
        self._sleep = sleep
        self._clock = clock

    # --------------------
    # Endpoint records
    # --------------------
    def find(self, name: str) -> Optional[TunnelEndpoint]:
        data = self.store.load(name)
        if data is None:
            return None
        return TunnelEndpoint.from_dict(data)

    def get(self, name: str) -> TunnelEndpoint:
        """
        Load an installed endpoint.

        Raises:
            EndpointNotFoundError: If the endpoint is not installed
        """
        endpoint = self.find(name)
        if endpoint is None:
            raise EndpointNotFoundError(
                f"Tunnel '{name}' is not installed. Run 'mole tunnel install' or 'mole setup' first"
            )
        return endpoint

    def state_of(self, name: str) -> TunnelState:
        endpoint = self.find(name)
        return endpoint.state if endpoint else TunnelState.UNINSTALLED

    def list(self) -> List[TunnelEndpoint]:
        endpoints = []
        for name in self.store.list():
            endpoint = self.find(name)
            if endpoint:
                endpoints.append(endpoint)
        return endpoints

    def _transition(self, endpoint: TunnelEndpoint, new_state: TunnelState, reason: str = "") -> None:
        old_state = endpoint.state
        if new_state != old_state and new_state not in TRANSITIONS[old_state]:
            raise PreconditionFailedError(
                f"Tunnel '{endpoint.name}' cannot go from {old_state.value} to {new_state.value}"
            )

        endpoint.state = new_state
        endpoint.updated_at = time.time()
        if new_state == TunnelState.UNINSTALLED:
            self.store.delete(endpoint.name)
        else:
            self.store.save(endpoint.name, endpoint.to_dict())

        if new_state != old_state:
            logger.info(
                f"Tunnel '{endpoint.name}': {old_state.value} -> {new_state.value}"
                + (f" ({reason})" if reason else "")
            )
            telemetry.record_event(f"tunnel.{new_state.value}", {
                "name": endpoint.name,
                "from": old_state.value,
                "reason": reason,
            })

    def _fail(self, endpoint: TunnelEndpoint, reason: str) -> None:
        if endpoint.state != TunnelState.UNINSTALLED:
            self._transition(endpoint, TunnelState.FAILED, reason)

    # --------------------
    # Observation
    # --------------------
    def classify(self, proc: ProcessInfo) -> Optional[ProcessRole]:
        """Map a tagged process to its role in the tunnel tree"""
        program = os.path.basename(proc.name or (proc.cmdline[0] if proc.cmdline else ""))
        if program == os.path.basename(self.settings.autossh_path):
            return ProcessRole.RECONNECT
        if self.settings.sleep_wrapper and program == os.path.basename(self.settings.sleep_wrapper[0]):
            return ProcessRole.SLEEP_PREVENTION
        if program == "ssh":
            return ProcessRole.TRANSPORT
        return None

    def scan_roles(self, endpoint: TunnelEndpoint) -> Dict[ProcessRole, List[int]]:
        """PIDs of the endpoint's tagged processes by role, from the process table only"""
        pids: Dict[ProcessRole, List[int]] = {role: [] for role in ProcessRole}
        for proc in self.processes.scan(endpoint.name, fallback_pattern=endpoint.forward_spec):
            role = self.classify(proc)
            if role is not None:
                pids[role].append(proc.pid)
        return pids

    def observe(self, endpoint: TunnelEndpoint) -> Observation:
        """Read-only point-in-time check of registration and process roles"""
        return Observation(
            registered=self.actuator.is_registered(endpoint.label),
            loaded=self.actuator.is_alive(endpoint.label),
            pids=self.scan_roles(endpoint),
        )

    def probe(self, name: str) -> Tuple[TunnelEndpoint, Observation]:
        """
        Observe the endpoint and apply the passive transitions
        (Starting/Degraded -> Connected, Connected -> Degraded, lost -> Failed).

        An endpoint left Starting by a start that timed out is failed once
        the startup window has passed with no process and the service
        unloaded; while the reconnect wrapper is alive it stays Starting.
        """
        endpoint = self.get(name)
        observation = self.observe(endpoint)
        state = endpoint.state
        transport = observation.alive(ProcessRole.TRANSPORT)
        wrapper = observation.alive(ProcessRole.RECONNECT)

        if state in (TunnelState.STARTING, TunnelState.DEGRADED) and transport and wrapper:
            self._transition(endpoint, TunnelState.CONNECTED, "transport process present")
        elif state == TunnelState.CONNECTED and not transport:
            if wrapper or observation.loaded:
                self._transition(endpoint, TunnelState.DEGRADED, "transport process absent")
            else:
                self._transition(endpoint, TunnelState.FAILED, "no tunnel process and service not loaded")
        elif state == TunnelState.DEGRADED and not wrapper and not observation.loaded:
            self._transition(endpoint, TunnelState.FAILED, "no tunnel process and service not loaded")
        elif state == TunnelState.STARTING and self._startup_expired(endpoint):
            if not observation.any_alive and not observation.loaded:
                self._transition(endpoint, TunnelState.FAILED, "no tunnel process after startup window")

        return endpoint, observation

    def _startup_expired(self, endpoint: TunnelEndpoint) -> bool:
        window = self.settings.startup_wait + self.settings.probe_timeout
        return time.time() - endpoint.updated_at > window

    # --------------------
    # Control
    # --------------------
    def install(self, endpoint: TunnelEndpoint) -> ControlResult:
        """
        Register the endpoint's descriptor with the service manager.

        A changed configuration replaces the old registration
        (stop if active, deregister old, register new).
        """
        descriptor = self.builder.build(endpoint)
        current = self.find(endpoint.name)

        if current is not None and current.state != TunnelState.UNINSTALLED:
            if current.same_config(endpoint) and self.actuator.is_registered(endpoint.label):
                return ControlResult(endpoint.name, current.state, False,
                                     f"Tunnel '{endpoint.name}' already installed with this configuration")

            logger.info(f"Reconfiguring tunnel '{endpoint.name}'")
            if current.state != TunnelState.STOPPED:
                self._stop_sequence(current)
                self._transition(current, TunnelState.STOPPED, "reconfigure")
            self.actuator.deregister(current.label)

            endpoint.state = TunnelState.STOPPED
            try:
                path = self.actuator.register(descriptor)
            except ExternalActionFailedError as e:
                self._fail(endpoint, f"registration failed: {e}")
                raise
            self._transition(endpoint, TunnelState.STOPPED, "reconfigured")
            return ControlResult(endpoint.name, endpoint.state, True,
                                 f"Tunnel '{endpoint.name}' re-registered at {path}")

        endpoint.state = TunnelState.UNINSTALLED
        path = self.actuator.register(descriptor)
        self._transition(endpoint, TunnelState.STOPPED, "installed")
        return ControlResult(endpoint.name, endpoint.state, True,
                             f"Tunnel '{endpoint.name}' registered at {path}")

    def start(self, name: str) -> ControlResult:
        """
        Start the tunnel and wait (bounded) for it to connect.

        Raises:
            PreconditionFailedError: If not installed, failed, or the registration is missing
            TunnelTimeoutError: If no tunnel process appeared before the probe timeout
        """
        endpoint = self.get(name)

        if endpoint.state == TunnelState.FAILED:
            raise PreconditionFailedError(
                f"Tunnel '{name}' is in failed state. Run 'mole tunnel reset {name}' "
                f"or 'mole tunnel restart {name}'"
            )
        if not self.actuator.is_registered(endpoint.label):
            raise PreconditionFailedError(
                f"Service registration for tunnel '{name}' is missing at "
                f"{self.actuator.artifact_path(endpoint.label)}. Run 'mole tunnel install' again"
            )

        if is_active(endpoint.state):
            observation = self.observe(endpoint)
            if observation.alive(ProcessRole.RECONNECT) or observation.alive(ProcessRole.TRANSPORT):
                return ControlResult(name, endpoint.state, False, f"Tunnel '{name}' is already running")
            self._stop_sequence(endpoint)
            self._transition(endpoint, TunnelState.STOPPED, "recorded active but no process found")

        self._transition(endpoint, TunnelState.STARTING, "start requested")
        try:
            self.actuator.start(endpoint.label)
        except ExternalActionFailedError as e:
            self._fail(endpoint, f"service manager refused to start: {e}")
            raise

        return self._await_connected(endpoint)

    def _await_connected(self, endpoint: TunnelEndpoint) -> ControlResult:
        self._sleep(self.settings.startup_wait)
        deadline = self._clock() + self.settings.probe_timeout

        while True:
            observation = self.observe(endpoint)
            if observation.alive(ProcessRole.RECONNECT) and observation.alive(ProcessRole.TRANSPORT):
                self._transition(endpoint, TunnelState.CONNECTED, "transport process present")
                return ControlResult(endpoint.name, endpoint.state, True, f"Tunnel '{endpoint.name}' connected")
            if self._clock() >= deadline:
                break
            self._sleep(self.settings.probe_interval)

        _, stderr_path = self.settings.endpoint_log_files(endpoint.name)
        if observation.alive(ProcessRole.RECONNECT) or observation.alive(ProcessRole.SLEEP_PREVENTION):
            return ControlResult(
                endpoint.name, endpoint.state, True,
                f"Tunnel '{endpoint.name}' may still be starting. Check: tail -f {stderr_path}",
            )

        self._fail(endpoint, "no tunnel process after probe timeout")
        raise TunnelTimeoutError(
            f"Tunnel '{endpoint.name}' did not start within "
            f"{self.settings.startup_wait + self.settings.probe_timeout:.0f}s. Check: tail -f {stderr_path}"
        )

    def _stop_sequence(self, endpoint: TunnelEndpoint) -> None:
        """Unload from the service manager and terminate lingering tagged processes"""
        try:
            self.actuator.stop(endpoint.label)
            observation = self.observe(endpoint)
            if observation.any_alive:
                survivors = self.processes.terminate(observation.all_pids, grace=self.settings.stop_grace)
                if survivors:
                    raise ExternalActionFailedError(
                        f"Could not terminate tunnel '{endpoint.name}' processes {survivors}. "
                        f"Check them with 'ps -p {','.join(map(str, survivors))}'"
                    )
        except ExternalActionFailedError as e:
            self._fail(endpoint, f"stop failed: {e}")
            raise

    def stop(self, name: str) -> ControlResult:
        """
        Stop the tunnel.

        Raises:
            PreconditionFailedError: If the tunnel is failed (reset it instead)
        """
        endpoint = self.get(name)

        if endpoint.state == TunnelState.FAILED:
            raise PreconditionFailedError(
                f"Tunnel '{name}' is in failed state. Run 'mole tunnel reset {name}'"
            )
        if endpoint.state == TunnelState.STOPPED:
            if not self.observe(endpoint).any_alive:
                return ControlResult(name, endpoint.state, False, f"Tunnel '{name}' is not running")
            self._stop_sequence(endpoint)
            return ControlResult(name, endpoint.state, True, f"Stopped lingering processes of tunnel '{name}'")

        self._stop_sequence(endpoint)
        self._transition(endpoint, TunnelState.STOPPED, "stop requested")
        return ControlResult(name, endpoint.state, True, f"Tunnel '{name}' stopped")

    def reset(self, name: str) -> ControlResult:
        """Clear a failed tunnel back to stopped"""
        endpoint = self.get(name)
        if endpoint.state != TunnelState.FAILED:
            return ControlResult(name, endpoint.state, False,
                                 f"Tunnel '{name}' is {endpoint.state.value}, nothing to reset")

        self._stop_sequence(endpoint)
        self._transition(endpoint, TunnelState.STOPPED, "reset")
        return ControlResult(name, endpoint.state, True, f"Tunnel '{name}' reset")

    def restart(self, name: str) -> ControlResult:
        """Stop sequence followed by start sequence, strictly in order"""
        endpoint = self.get(name)
        if not self.actuator.is_registered(endpoint.label):
            raise PreconditionFailedError(
                f"Service registration for tunnel '{name}' is missing. Run 'mole tunnel install' again"
            )

        logger.info(f"Restarting tunnel '{name}'")
        self._stop_sequence(endpoint)
        self._transition(endpoint, TunnelState.STOPPED, "restart requested")
        return self.start(name)

    def uninstall(self, name: str) -> ControlResult:
        """Stop if needed, remove the registration and the log files"""
        endpoint = self.find(name)
        if endpoint is None:
            return ControlResult(name, TunnelState.UNINSTALLED, False, f"Tunnel '{name}' is not installed")

        if endpoint.state == TunnelState.FAILED:
            self.reset(name)
        elif endpoint.state != TunnelState.STOPPED:
            self.stop(name)
        endpoint = self.get(name)

        self.actuator.deregister(endpoint.label)
        for path in self.settings.endpoint_log_files(name):
            if path.exists():
                path.unlink()
                logger.info(f"Removed {path}")

        self._transition(endpoint, TunnelState.UNINSTALLED, "uninstall requested")
        return ControlResult(name, endpoint.state, True, f"Tunnel '{name}' uninstalled")
