"""
mole - persistent reverse SSH tunnel supervisor

Keeps a host behind NAT reachable through a public gateway, supporting:
- Tunnel endpoints registered with launchd or systemd --user (autossh + sleep prevention)
- Lifecycle control with a per-endpoint state machine
- Client credential issuance, authorization and revocation
- Read-only diagnostics with a healthy/degraded/down verdict
- Inside host and gateway provisioning
"""

__version__ = "0.1.0"

# Export core components
from .core import Settings, MoleError

# Export domain models
from .domain.credentials import ClientCredential, CredentialStore, AuthorizationList

from .domain.tunnel import (
    TunnelEndpoint,
    TunnelState,
    TunnelSupervisor,
    ServiceDescriptor,
    ServiceDescriptorBuilder,
)

from .domain.diagnostics import DiagnosticAggregator, DiagnosticReport, Verdict

__all__ = [
    # Version
    "__version__",
    # Core
    "Settings",
    "MoleError",
    # Credentials
    "ClientCredential",
    "CredentialStore",
    "AuthorizationList",
    # Tunnel
    "TunnelEndpoint",
    "TunnelState",
    "TunnelSupervisor",
    "ServiceDescriptor",
    "ServiceDescriptorBuilder",
    # Diagnostics
    "DiagnosticAggregator",
    "DiagnosticReport",
    "Verdict",
]
