"""
Core interfaces for dependency injection
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from ..domain.tunnel.models import ServiceDescriptor


@dataclass
class ProcessInfo:
    """Snapshot of a single process table entry"""
    pid: int
    name: str
    cmdline: List[str] = field(default_factory=list)


@dataclass
class CommandResult:
    """Outcome of an external command"""
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class StateStore(ABC):
    """State storage interface"""

    @abstractmethod
    def save(self, name: str, state: Dict[str, Any]) -> None:
        """Save state for a named instance"""
        pass

    @abstractmethod
    def load(self, name: str) -> Optional[Dict[str, Any]]:
        """Load state for a named instance"""
        pass

    @abstractmethod
    def delete(self, name: str) -> None:
        """Delete state for a named instance"""
        pass

    @abstractmethod
    def list(self) -> list[str]:
        """List all instance names"""
        pass

    @abstractmethod
    def exists(self, name: str) -> bool:
        """Check if state exists for a named instance"""
        pass


class PlatformActuator(ABC):
    """
    Platform service manager interface.

    Registration writes the persistent artifact; start/stop load and unload
    it from the running service manager.
    """

    @abstractmethod
    def register(self, descriptor: "ServiceDescriptor") -> Path:
        """Write the registration artifact, return its path"""
        pass

    @abstractmethod
    def deregister(self, label: str) -> bool:
        """Remove the registration artifact, return whether one existed"""
        pass

    @abstractmethod
    def start(self, label: str) -> None:
        """Load/enable the registered service"""
        pass

    @abstractmethod
    def stop(self, label: str) -> None:
        """Unload/disable the service, keeping its artifact"""
        pass

    @abstractmethod
    def is_alive(self, label: str) -> bool:
        """Check whether the service manager has the service loaded"""
        pass

    @abstractmethod
    def is_registered(self, label: str) -> bool:
        """Check whether the registration artifact exists"""
        pass

    @abstractmethod
    def read_registration(self, label: str) -> Optional[Dict[str, Any]]:
        """Read the raw registration artifact back, None if absent"""
        pass

    @abstractmethod
    def artifact_path(self, label: str) -> Path:
        """Path of the registration artifact"""
        pass


class ProcessTable(ABC):
    """Process table access"""

    @abstractmethod
    def scan(self, tag: str, fallback_pattern: Optional[str] = None) -> List[ProcessInfo]:
        """
        List processes carrying the tunnel identity tag.

        Processes whose environment cannot be read are matched on
        fallback_pattern appearing in their command line instead.
        """
        pass

    @abstractmethod
    def terminate(self, pids: Sequence[int], grace: float = 1.0) -> List[int]:
        """Terminate processes, return the PIDs still alive afterwards"""
        pass


class CommandRunner(ABC):
    """External command execution interface"""

    @abstractmethod
    def run(
        self,
        argv: Sequence[str],
        check: bool = True,
        sudo: bool = False,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run a command and return its result"""
        pass

    @abstractmethod
    def which(self, program: str) -> Optional[str]:
        """Resolve a program on PATH"""
        pass


class ConnectionFactory(ABC):
    """SSH connection factory interface"""

    @abstractmethod
    def create(self, params: Dict[str, Any]) -> Any:
        """Create and connect SSH client"""
        pass


class PromptProvider(ABC):
    """User prompt interface"""

    @abstractmethod
    def prompt(self, message: str, default: Optional[str] = None, password: bool = False) -> str:
        """Prompt user for input"""
        pass

    @abstractmethod
    def confirm(self, message: str, default: bool = False) -> bool:
        """Prompt user for confirmation"""
        pass

    @abstractmethod
    def step(self, index: int, total: int, message: str) -> None:
        """Announce step index of total"""
        pass

    @abstractmethod
    def detail(self, message: str) -> None:
        pass

    @abstractmethod
    def warning(self, message: str) -> None:
        pass
