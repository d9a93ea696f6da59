"""
Package manager adapters
"""
from typing import Optional, Sequence

from ...core.interfaces import CommandRunner
from ...core.exceptions import ExternalActionFailedError
from ...core.logging import get_logger

logger = get_logger(__name__)

SUPPORTED = ("brew", "apt", "dnf", "yum")


class PackageManager:
    """Idempotent install/remove through brew, apt, dnf or yum"""

    def __init__(self, name: str, runner: CommandRunner):
        if name not in SUPPORTED:
            raise ValueError(f"Unsupported package manager: {name}")
        self.name = name
        self.runner = runner

    @classmethod
    def detect(cls, runner: CommandRunner, candidates: Sequence[str] = SUPPORTED) -> "PackageManager":
        """
        Pick the first available package manager.

        Raises:
            ExternalActionFailedError: If none is installed
        """
        for name in candidates:
            if runner.which(name):
                return cls(name, runner)
        hint = "Install Homebrew from https://brew.sh" if "brew" in candidates else "Install one of them first"
        raise ExternalActionFailedError(
            f"No supported package manager found ({'/'.join(candidates)}). {hint}"
        )

    @property
    def _sudo(self) -> bool:
        return self.name != "brew"

    def install(self, packages: Sequence[str]) -> None:
        packages = list(packages)
        if self.name == "brew":
            result = self.runner.run(["brew", "install", *packages], check=False)
            if not result.ok:
                # Already installed but outdated formulae make install fail
                self.runner.run(["brew", "upgrade", *packages], check=False)
            missing = [p for p in packages if not self.runner.which(p)]
            if missing:
                raise ExternalActionFailedError(
                    f"brew could not install {', '.join(missing)}. Run 'brew install {' '.join(missing)}' manually",
                    command=result.argv,
                    returncode=result.returncode,
                    stderr=result.stderr,
                )
        elif self.name == "apt":
            self.runner.run(["apt-get", "update"], sudo=True)
            self.runner.run(["apt-get", "install", "-y", *packages], sudo=True)
        else:
            self.runner.run([self.name, "install", "-y", *packages], sudo=True)
        logger.info(f"Installed {', '.join(packages)} with {self.name}")

    def uninstall(self, packages: Sequence[str]) -> bool:
        """Remove packages; returns False (and logs) when removal failed"""
        packages = list(packages)
        if self.name == "brew":
            argv = ["brew", "uninstall", *packages]
        elif self.name == "apt":
            argv = ["apt-get", "remove", "-y", *packages]
        else:
            argv = [self.name, "remove", "-y", *packages]

        result = self.runner.run(argv, check=False, sudo=self._sudo)
        if not result.ok:
            logger.warning(f"Could not uninstall {', '.join(packages)}: {result.stderr.strip()}")
            return False
        logger.info(f"Uninstalled {', '.join(packages)}")
        return True

    def has(self, program: str) -> Optional[str]:
        return self.runner.which(program)
