"""
Subprocess-based command runner
"""
import shutil
import subprocess
from typing import Optional, Sequence

from ...core.interfaces import CommandRunner, CommandResult
from ...core.exceptions import ExternalActionFailedError
from ...core.logging import get_logger

logger = get_logger(__name__)


class SubprocessRunner(CommandRunner):
    """Runs external commands, optionally through sudo"""

    def __init__(self, timeout: Optional[float] = 300):
        self.timeout = timeout

    def run(
        self,
        argv: Sequence[str],
        check: bool = True,
        sudo: bool = False,
        input: Optional[str] = None,
    ) -> CommandResult:
        """
        Run a command.

        Raises:
            ExternalActionFailedError: If check is set and the command fails
                or cannot be executed
        """
        full = (["sudo"] if sudo else []) + list(argv)
        logger.debug(f"Running: {' '.join(full)}")

        try:
            proc = subprocess.run(
                full,
                input=input,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            if check:
                raise ExternalActionFailedError(f"Command not found: {full[0]}", command=full) from e
            return CommandResult(argv=full, returncode=127, stderr=str(e))
        except subprocess.TimeoutExpired as e:
            if check:
                raise ExternalActionFailedError(
                    f"Command timed out after {self.timeout}s: {' '.join(full)}", command=full
                ) from e
            return CommandResult(argv=full, returncode=124, stderr=str(e))

        result = CommandResult(argv=full, returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
        if check and not result.ok:
            raise ExternalActionFailedError(
                f"Command failed ({result.returncode}): {' '.join(full)}"
                + (f": {result.stderr.strip()}" if result.stderr.strip() else ""),
                command=full,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    def which(self, program: str) -> Optional[str]:
        return shutil.which(program)
