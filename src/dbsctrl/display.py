"""
Display manager for Rich-based REPL output.

Handles all console output including the settings table, command
results and the node event log.
"""

import logging
import time
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .controller import SyncResult
from .core import AMPLITUDE_DISPLAY_FULL_SCALE_UA, APP_NAME

logger = logging.getLogger(__name__)


class DisplayManager:
    """Manages console output with Rich library."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize display manager.

        Args:
            console: Rich Console instance (creates one if None)
        """
        self.console = console or Console()

    def print_banner(self) -> None:
        """Print startup banner."""
        panel = Panel(
            f"[bold cyan]{APP_NAME}[/bold cyan]\n"
            "[dim]Type 'help' for commands, 'quit' to exit[/dim]",
            expand=False,
        )
        self.console.print(panel)

    def print_status(self, data: dict) -> None:
        """Display the settings table.

        Args:
            data: Dictionary from SyncOrchestrator.get_status()
        """
        self.console.print(self.format_status_table(data))

    def print_result(self, cmd: str, result: SyncResult) -> None:
        """Display command result.

        Args:
            cmd: Command name
            result: SyncResult enum
        """
        if result == SyncResult.SUCCESS:
            self.console.print(f"[green]✓[/green] {cmd} succeeded", highlight=False)
        elif result == SyncResult.NOT_CONNECTED:
            self.console.print(
                f"[yellow]⚠[/yellow] {cmd} needs a connection", highlight=False
            )
        elif result == SyncResult.PAYLOAD_TOO_LARGE:
            self.console.print(
                f"[red]✗[/red] {cmd} command exceeds characteristic length",
                highlight=False,
            )
        elif result == SyncResult.INVALID_PARAMETER:
            self.console.print(
                f"[red]✗[/red] {cmd} invalid parameter", highlight=False
            )
        elif result == SyncResult.TIMEOUT:
            self.console.print(
                f"[red]✗[/red] {cmd} timed out waiting for node", highlight=False
            )
        elif result == SyncResult.FORMAT_ERROR:
            self.console.print(
                f"[yellow]⚠[/yellow] {cmd} received an unrecognized frame",
                highlight=False,
            )
        else:
            self.console.print(f"[red]✗[/red] {cmd} failed", highlight=False)

    def print_error(self, message: str) -> None:
        """Print red error message.

        Args:
            message: Error message text
        """
        self.console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_info(self, message: str) -> None:
        """Print blue info message.

        Args:
            message: Info message text
        """
        self.console.print(f"[cyan]Info:[/cyan] {message}", highlight=False)

    def print_log(self, messages: list) -> None:
        """Print the node event log in terminal style."""
        for message in messages:
            self.console.print(f"[green]{message}[/green]", highlight=False)

    def print_raw(self, text: str) -> None:
        """Print text exactly as given, with no markup or highlighting."""
        self.console.print(text, markup=False, highlight=False)

    def print_connect_result(self, result: SyncResult, connected: bool) -> None:
        """Report a connect attempt, keeping link and initial read apart.

        Args:
            result: SyncResult from SyncOrchestrator.connect()
            connected: Whether the link is up after the attempt
        """
        if result == SyncResult.SUCCESS:
            self.console.print("[green]✓[/green] Connected successfully", highlight=False)
        elif connected:
            self.console.print(
                "[yellow]⚠[/yellow] Connected, but could not read node settings. "
                "Use 'read' command to retry.",
                highlight=False,
            )
            self.print_result("read", result)
        else:
            self.console.print(
                "[yellow]⚠[/yellow] Could not connect to node. "
                "Use 'connect' command to retry.",
                highlight=False,
            )

    def print_help(self, commands: list) -> None:
        """Display command reference.

        Args:
            commands: List of Command objects
        """
        table = Table(title="Available Commands", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Aliases", style="magenta")
        table.add_column("Description", style="white")
        table.add_column("Usage", style="yellow")

        for cmd in commands:
            aliases = ", ".join(cmd.aliases) if cmd.aliases else "-"
            table.add_row(cmd.name, aliases, cmd.description, cmd.usage)

        self.console.print(table)
        self.console.print(
            "[dim]Keyboard shortcuts: Ctrl+C to interrupt, Ctrl+D to exit[/dim]"
        )

    def format_status_table(self, data: dict) -> Table:
        """Create Rich Table for settings display.

        Args:
            data: Dictionary from SyncOrchestrator.get_status()

        Returns:
            Rich Table object
        """
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="yellow")

        table.add_row("Connection", "connected" if data.get("connected") else "disconnected")
        table.add_row("Firmware", data.get("revision", "unknown"))
        if "cap_id" in data:
            table.add_row("Cap ID", data["cap_id"])
        table.add_row("Amplitude", self.format_amplitude(data.get("amplitude", 0)))
        table.add_row("Charge balancing", "ON")
        table.add_row("Frequency", self.format_frequency(data.get("frequency_hz", 0)))
        table.add_row(
            "Pulse duration", self.format_pulse(data.get("pulse_duration_us", 0))
        )
        table.add_row(
            "Activate stimulation",
            "ON" if data.get("activate_on_disconnect") else "OFF",
        )
        table.add_row("Battery", self.format_battery(data.get("battery_percent")))
        table.add_row(
            "Sync",
            "[red]required[/red]" if data.get("needs_sync") else "[green]in sync[/green]",
        )
        table.add_row("Clock", self.format_clock(time.time()))

        return table

    @staticmethod
    def format_amplitude(percent: int) -> str:
        """Format amplitude with its current into a 1 kOhm load.

        Args:
            percent: Amplitude in percent of scale

        Returns:
            Formatted amplitude string
        """
        microamps = percent / 100 * AMPLITUDE_DISPLAY_FULL_SCALE_UA
        return f"{percent}% ({microamps:.0f} µA @ 1kΩ)"

    @staticmethod
    def format_frequency(hz: int) -> str:
        return f"{hz} Hz"

    @staticmethod
    def format_pulse(us: int) -> str:
        return f"{us} μs"

    @staticmethod
    def format_battery(percent: Optional[int]) -> str:
        """Format battery level, which is unknown until first read."""
        if percent is None:
            return "unknown"
        return f"{percent}%"

    @staticmethod
    def format_clock(timestamp: float) -> str:
        """Format local time with the epoch in hex, as the node logs it.

        Args:
            timestamp: Seconds since the epoch

        Returns:
            e.g. ``14:03:59 (0x6537A1CF)``
        """
        local = datetime.fromtimestamp(timestamp).strftime("%H:%M:%S")
        return f"{local} (0x{int(timestamp) & 0xFFFFFFFF:08X})"
