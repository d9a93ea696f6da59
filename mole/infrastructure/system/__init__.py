"""
System command adapters
"""
from .runner import SubprocessRunner
from .packages import PackageManager
from .firewall import Firewall, UfwFirewall, FirewalldFirewall

__all__ = [
    "SubprocessRunner",
    "PackageManager",
    "Firewall",
    "UfwFirewall",
    "FirewalldFirewall",
]
