"""
Per-invocation wiring of settings and services for CLI commands
"""
from dataclasses import dataclass, field, fields
from functools import cached_property
from typing import Any, Dict, Optional

import typer

from ...core.exceptions import ConfigError
from ...core.interfaces import CommandRunner, ConnectionFactory, PlatformActuator, ProcessTable, StateStore
from ...core.settings import Settings
from ...core.utils import load_ssh_config
from ...domain.credentials import CredentialStore
from ...domain.diagnostics import DiagnosticAggregator
from ...domain.tunnel import RestartPolicy, TunnelEndpoint, TunnelSupervisor
from ...infrastructure.platform import PsutilProcessTable, create_actuator
from ...infrastructure.ssh import ParamikoConnectionFactory
from ...infrastructure.state import FileEndpointStore
from ...infrastructure.system import SubprocessRunner
from ..config.loader import ConfigLoader

_ENDPOINT_FIELDS = {f.name for f in fields(TunnelEndpoint)} - {"name", "state", "updated_at"}


@dataclass
class Runtime:
    """
    Merged configuration plus lazily built services.

    Services are created on first use so commands that only need the
    credential store never touch the service manager. Tests assign fakes
    to the attributes before invoking commands.
    """
    config: Dict[str, Any] = field(default_factory=dict)
    settings: Settings = field(default_factory=Settings)

    @classmethod
    def load(cls, config_file=None, loader: Optional[ConfigLoader] = None) -> "Runtime":
        loader = loader or ConfigLoader()
        cfg = loader.load(toml_path=config_file)
        return cls(config=cfg, settings=Settings.from_config(cfg))

    @cached_property
    def runner(self) -> CommandRunner:
        return SubprocessRunner()

    @cached_property
    def store(self) -> StateStore:
        return FileEndpointStore(self.settings.state_dir)

    @cached_property
    def actuator(self) -> PlatformActuator:
        return create_actuator(self.settings, self.runner)

    @cached_property
    def processes(self) -> ProcessTable:
        return PsutilProcessTable()

    @cached_property
    def connection_factory(self) -> ConnectionFactory:
        return ParamikoConnectionFactory()

    @cached_property
    def supervisor(self) -> TunnelSupervisor:
        return TunnelSupervisor(self.settings, self.store, self.actuator, self.processes)

    @cached_property
    def credentials(self) -> CredentialStore:
        return CredentialStore(self.settings)

    @cached_property
    def aggregator(self) -> DiagnosticAggregator:
        return DiagnosticAggregator(self.settings, self.supervisor)

    def endpoint(self, name: str, overrides: Optional[Dict[str, Any]] = None) -> TunnelEndpoint:
        """
        Build a TunnelEndpoint from the [tunnel] section and CLI overrides.

        When only a host is given and it names a Host entry in ~/.ssh/config,
        hostname, user, port and identity file are taken from that entry.
        """
        section = ConfigLoader().merge_configs(
            self.config.get("tunnel") or {}, overrides or {}
        )
        unknown = set(section) - _ENDPOINT_FIELDS
        if unknown:
            raise ConfigError(f"Unknown tunnel setting(s): {', '.join(sorted(unknown))}")

        if section.get("remote_host") and not section.get("remote_user"):
            try:
                ssh_params = load_ssh_config(section["remote_host"])
            except ConfigError:
                ssh_params = {}
            if ssh_params.get("user"):
                section["remote_host"] = ssh_params["host"]
                section["remote_user"] = ssh_params["user"]
                section.setdefault("remote_ssh_port", ssh_params["port"])
                if ssh_params.get("key_file"):
                    section.setdefault("identity_file", ssh_params["key_file"])

        if not section.get("remote_host") or not section.get("remote_user"):
            raise ConfigError(
                "Gateway host and user are required: pass --host and --user "
                "or set remote_host/remote_user in the tunnel section of the config file"
            )
        try:
            endpoint = TunnelEndpoint(name=name, **section)
        except ValueError as e:
            choices = ", ".join(p.value for p in RestartPolicy)
            raise ConfigError(f"Invalid tunnel setting: {e} (restart_policy: {choices})") from e
        endpoint.validate()
        return endpoint


def get_runtime(ctx: typer.Context) -> Runtime:
    """Runtime stored on the root context by the app callback"""
    runtime = ctx.find_root().obj
    if runtime is None:
        runtime = Runtime.load()
        ctx.find_root().obj = runtime
    return runtime
