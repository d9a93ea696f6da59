"""
Local state storage
"""
from .endpoint_store import FileEndpointStore

__all__ = ["FileEndpointStore"]
