"""
SSH access to the gateway
"""
from .client import GatewayClient, GatewayConfig, ParamikoConnectionFactory, verify_access

__all__ = ["GatewayClient", "GatewayConfig", "ParamikoConnectionFactory", "verify_access"]
