"""
Rich-based confirmations and status messages

Everything here writes to stderr; stdout belongs to the remote command.
"""
from typing import Optional
from rich.console import Console
from rich.prompt import Confirm

from ...core.interfaces import PromptProvider
from ...core.exceptions import KorasiError
from ...core.logging import get_stderr_console


class RichPromptProvider(PromptProvider):

    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_stderr_console()

    def confirm(self, message: str, default: bool = False) -> bool:
        return Confirm.ask(message, default=default, console=self.console)

    def info(self, message: str) -> None:
        self.console.print(f"[cyan]ℹ[/cyan] {message}")

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def error(self, error: KorasiError) -> None:
        """Print the failure and, when known, how to fix it"""
        self.console.print(f"[red]Error:[/red] {error.message}", highlight=False)
        if error.hint:
            self.console.print(f"[yellow]Hint:[/yellow] {error.hint}", highlight=False)
