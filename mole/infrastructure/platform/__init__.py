"""
Platform service managers and process table
"""
from ...core.interfaces import CommandRunner, PlatformActuator
from ...core.settings import Settings
from .launchd import LaunchdActuator, render_plist
from .systemd import SystemdUserActuator, render_unit, parse_unit
from .processes import PsutilProcessTable


def create_actuator(settings: Settings, runner: CommandRunner) -> PlatformActuator:
    """Actuator for the configured platform"""
    if settings.platform == "darwin":
        return LaunchdActuator(settings.launch_agents_dir, runner)
    return SystemdUserActuator(settings.systemd_user_dir, runner)


__all__ = [
    "LaunchdActuator",
    "SystemdUserActuator",
    "PsutilProcessTable",
    "create_actuator",
    "render_plist",
    "render_unit",
    "parse_unit",
]
