"""
Provisioning orchestrators
"""
from .inside import InsideHostProvisioner, SetupRequest, SetupOutcome, TeardownRequest
from .gateway import (
    GatewayProvisioner,
    GatewayOptions,
    enforce_loopback_forwarding,
    remove_mole_setting,
)

__all__ = [
    "InsideHostProvisioner",
    "SetupRequest",
    "SetupOutcome",
    "TeardownRequest",
    "GatewayProvisioner",
    "GatewayOptions",
    "enforce_loopback_forwarding",
    "remove_mole_setting",
]
