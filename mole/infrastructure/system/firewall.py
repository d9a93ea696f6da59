"""
Firewall adapters (ufw, firewalld)
"""
from abc import ABC, abstractmethod
from typing import Optional

from ...core.interfaces import CommandRunner
from ...core.logging import get_logger

logger = get_logger(__name__)


class Firewall(ABC):
    """Host firewall adapter"""
    name = "none"

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    @staticmethod
    def detect(runner: CommandRunner) -> Optional["Firewall"]:
        if runner.which("ufw"):
            return UfwFirewall(runner)
        if runner.which("firewall-cmd"):
            return FirewalldFirewall(runner)
        return None

    @abstractmethod
    def allow(self, start: int, end: int, proto: str, comment: str = "") -> None:
        """Open the port range for proto"""
        pass

    @abstractmethod
    def remove(self, start: int, end: int, proto: str) -> bool:
        """Delete the rule; False when it did not exist"""
        pass

    @abstractmethod
    def reload(self) -> None:
        pass


class UfwFirewall(Firewall):
    name = "ufw"

    @staticmethod
    def _rule(start: int, end: int, proto: str) -> str:
        return f"{start}:{end}/{proto}" if end != start else f"{start}/{proto}"

    def allow(self, start: int, end: int, proto: str, comment: str = "") -> None:
        argv = ["ufw", "allow", self._rule(start, end, proto)]
        if comment:
            argv += ["comment", comment]
        self.runner.run(argv, sudo=True)

    def remove(self, start: int, end: int, proto: str) -> bool:
        result = self.runner.run(["ufw", "delete", "allow", self._rule(start, end, proto)], check=False, sudo=True)
        if not result.ok:
            logger.warning(f"ufw rule {self._rule(start, end, proto)} not found")
        return result.ok

    def reload(self) -> None:
        self.runner.run(["ufw", "--force", "reload"], sudo=True)


class FirewalldFirewall(Firewall):
    name = "firewalld"

    @staticmethod
    def _port(start: int, end: int, proto: str) -> str:
        return f"{start}-{end}/{proto}" if end != start else f"{start}/{proto}"

    def allow(self, start: int, end: int, proto: str, comment: str = "") -> None:
        self.runner.run(["firewall-cmd", "--permanent", f"--add-port={self._port(start, end, proto)}"], sudo=True)

    def remove(self, start: int, end: int, proto: str) -> bool:
        result = self.runner.run(
            ["firewall-cmd", "--permanent", f"--remove-port={self._port(start, end, proto)}"],
            check=False,
            sudo=True,
        )
        if not result.ok:
            logger.warning(f"firewalld port {self._port(start, end, proto)} not found")
        return result.ok

    def reload(self) -> None:
        self.runner.run(["firewall-cmd", "--reload"], sudo=True)
