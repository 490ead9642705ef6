"""
KT Intake Notifications

The single ``notify(message)`` sink the cause board and the conversion
bridge report through. In the CLI it prints the toast text with rich.
"""

from typing import List, Optional, Protocol

from rich.console import Console


class Notifier(Protocol):
    def notify(self, message: str) -> None:
        ...


class ConsoleNotifier:
    """Print notifications to a rich console."""

    def __init__(self, console: Optional[Console] = None, quiet: bool = False):
        self.console = console or Console()
        self.quiet = quiet

    def notify(self, message: str) -> None:
        if self.quiet:
            return
        self.console.print(f"[blue]ℹ[/blue] {message}")


class RecordingNotifier:
    """Keep notifications in memory (used by tests and batch runs)."""

    def __init__(self):
        self.messages: List[str] = []

    def notify(self, message: str) -> None:
        self.messages.append(message)

    @property
    def last(self) -> Optional[str]:
        return self.messages[-1] if self.messages else None


class NullNotifier:
    def notify(self, message: str) -> None:
        pass
