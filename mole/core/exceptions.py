"""
Unified exception definitions
"""
from typing import Optional, Sequence


class MoleError(Exception):
    """Base exception class"""
    pass


class ConfigError(MoleError):
    """Configuration error"""
    pass


class AlreadyExistsError(MoleError):
    """Resource already exists (informational for most callers)"""
    pass


class CredentialExistsError(AlreadyExistsError):
    """Client credential already issued"""
    pass


class NotFoundError(MoleError):
    """Resource not found"""
    pass


class CredentialNotFoundError(NotFoundError):
    """Client credential not found"""
    pass


class EndpointNotFoundError(NotFoundError):
    """Tunnel endpoint not installed"""
    pass


class PreconditionFailedError(MoleError):
    """Operation not allowed in the current state"""
    pass


class ExternalActionFailedError(MoleError):
    """External command or platform action failed"""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = list(command) if command else None
        self.returncode = returncode
        self.stderr = stderr


class TunnelTimeoutError(MoleError):
    """Liveness probe did not observe the expected state in time"""
    pass
