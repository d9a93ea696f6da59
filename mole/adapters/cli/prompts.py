"""
Interactive prompts and step output for the CLI
"""
from typing import Optional

from rich.console import Console
from rich.prompt import Confirm, Prompt

from ...core.interfaces import PromptProvider
from ...core.logging import get_stdout_console


class RichPromptProvider(PromptProvider):
    """
    Prompts through rich, plus the numbered step lines printed by the
    provisioning flows ("[3/7] Verifying SSH access to gateway...").
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_stdout_console()

    def prompt(self, message: str, default: Optional[str] = None, password: bool = False) -> str:
        return Prompt.ask(message, default=default, password=password, console=self.console)

    def confirm(self, message: str, default: bool = False) -> bool:
        return Confirm.ask(message, default=default, console=self.console)

    def step(self, index: int, total: int, message: str) -> None:
        self.console.print(f"[bold][{index}/{total}][/bold] {message}")

    def detail(self, message: str) -> None:
        # Details echo paths and remote output verbatim
        self.console.print(f"  {message}", markup=False, highlight=False)

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠[/yellow] {message}")
