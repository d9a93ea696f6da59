"""
Diagnostic report models
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from ..tunnel.models import ProcessRole


class Verdict(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"

    @property
    def exit_code(self) -> int:
        return {"healthy": 0, "down": 1, "degraded": 2}[self.value]


class CheckStatus(str, Enum):
    OK = "ok"
    WARN = "warn"
    FAIL = "fail"
    UNKNOWN = "unknown"


@dataclass
class Check:
    """Result of a single best-effort sub-check"""
    status: CheckStatus
    detail: str = ""


@dataclass
class LogTail:
    stream: str
    path: Path
    present: bool
    total_lines: int = 0
    lines: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class DiagnosticReport:
    """Point-in-time, never persisted"""
    endpoint: str
    recorded_state: Optional[str]
    registration: Check
    service_loaded: Check
    processes: Optional[Dict[ProcessRole, List[int]]]
    binding: Optional[str]
    tunnel_port: Optional[int]
    remote: Optional[str]
    internet: Check
    gateway: Check
    logs: List[LogTail]
    verdict: Verdict
    caveat: str
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def registered(self) -> bool:
        return self.registration.status == CheckStatus.OK
