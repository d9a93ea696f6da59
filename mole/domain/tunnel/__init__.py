"""
Tunnel domain module
"""
from .models import (
    TunnelEndpoint,
    TunnelState,
    ProcessRole,
    RestartPolicy,
    ServiceDescriptor,
    Observation,
    ControlResult,
)
from .descriptor import ServiceDescriptorBuilder
from .supervisor import TunnelSupervisor

__all__ = [
    "TunnelEndpoint",
    "TunnelState",
    "ProcessRole",
    "RestartPolicy",
    "ServiceDescriptor",
    "Observation",
    "ControlResult",
    "ServiceDescriptorBuilder",
    "TunnelSupervisor",
]
