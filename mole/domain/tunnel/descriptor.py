"""
Service descriptor builder

Translates a TunnelEndpoint into the declarative record registered with the
platform service manager. The process tree it describes is:

    <sleep wrapper> autossh -M 0 -N ... -R 127.0.0.1:<bind>:<host>:<port> user@gateway
        └── ssh (respawned by autossh)

The sleep wrapper is outermost so the host stays awake for the whole
lifetime of the transport. autossh outlives each ssh connection attempt, and
the service manager restarts the whole tree per the restart policy.
"""
from typing import List

from ...core.constants import TUNNEL_TAG_ENV
from ...core.settings import Settings
from .models import TunnelEndpoint, ServiceDescriptor


class ServiceDescriptorBuilder:
    """Pure TunnelEndpoint -> ServiceDescriptor translation"""

    def __init__(self, settings: Settings):
        self.settings = settings

    def transport_arguments(self, endpoint: TunnelEndpoint) -> List[str]:
        """autossh command line without the sleep wrapper"""
        args = [
            self.settings.autossh_path,
            "-M", "0",
            "-N",
            "-p", str(endpoint.remote_ssh_port),
        ]
        if endpoint.identity_file:
            args += ["-i", endpoint.identity_file]
        args += [
            "-o", f"ServerAliveInterval={endpoint.keepalive_interval}",
            "-o", f"ServerAliveCountMax={endpoint.keepalive_retries}",
            "-o", "ExitOnForwardFailure=yes",
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", "BatchMode=yes",
            "-R", endpoint.forward_spec,
            endpoint.destination,
        ]
        return args

    def throttle_for(self, endpoint: TunnelEndpoint) -> int:
        """Restart throttle, never below the keepalive detection time"""
        detection = endpoint.keepalive_interval * endpoint.keepalive_retries
        return max(endpoint.throttle_interval, detection)

    def build(self, endpoint: TunnelEndpoint) -> ServiceDescriptor:
        endpoint.validate()
        stdout_path, stderr_path = self.settings.endpoint_log_files(endpoint.name)
        environment = (
            (TUNNEL_TAG_ENV, endpoint.name),
            ("AUTOSSH_GATETIME", "0"),
        )
        return ServiceDescriptor(
            label=endpoint.label,
            program_arguments=tuple(self.settings.sleep_wrapper) + tuple(self.transport_arguments(endpoint)),
            environment=environment,
            restart_policy=endpoint.restart_policy,
            require_network=True,
            run_at_load=True,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            throttle_interval=self.throttle_for(endpoint),
        )
