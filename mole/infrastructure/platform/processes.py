"""
psutil-backed process table
"""
from typing import List, Optional, Sequence

import psutil

from ...core.constants import TUNNEL_TAG_ENV
from ...core.interfaces import ProcessTable, ProcessInfo
from ...core.logging import get_logger

logger = get_logger(__name__)


class PsutilProcessTable(ProcessTable):
    """
    Finds tunnel processes by the MOLE_TUNNEL environment tag.

    The tag is set in the service descriptor and inherited by the whole
    process tree. Processes whose environment is not readable are matched on
    the forward spec in their command line instead.
    """

    def __init__(self, tag_env: str = TUNNEL_TAG_ENV):
        self.tag_env = tag_env

    def scan(self, tag: str, fallback_pattern: Optional[str] = None) -> List[ProcessInfo]:
        found: List[ProcessInfo] = []
        for proc in psutil.process_iter(["pid", "name", "cmdline"]):
            try:
                cmdline = proc.info.get("cmdline") or []
                if self._matches(proc, tag, cmdline, fallback_pattern):
                    found.append(ProcessInfo(pid=proc.info["pid"], name=proc.info.get("name") or "", cmdline=cmdline))
            except (psutil.NoSuchProcess, psutil.ZombieProcess):
                continue
        return found

    def _matches(self, proc: psutil.Process, tag: str, cmdline: List[str], fallback_pattern: Optional[str]) -> bool:
        try:
            return proc.environ().get(self.tag_env) == tag
        except (psutil.AccessDenied, OSError):
            if fallback_pattern:
                return fallback_pattern in " ".join(cmdline)
            return False

    def terminate(self, pids: Sequence[int], grace: float = 1.0) -> List[int]:
        procs = []
        for pid in pids:
            try:
                proc = psutil.Process(pid)
            except psutil.NoSuchProcess:
                continue
            procs.append(proc)
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied:
                logger.warning(f"Not allowed to terminate PID {pid}")

        _, alive = psutil.wait_procs(procs, timeout=grace)
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied:
                logger.warning(f"Not allowed to kill PID {proc.pid}")

        _, still_alive = psutil.wait_procs(alive, timeout=grace)
        return sorted(p.pid for p in still_alive)
