"""
Main REPL application for stimulation cap control.

Interactive command loop with async support, auto-completion and the
node event log, plus one-shot commands for scripting.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory

from .commands import COMMANDS, CommandCompleter, get_command
from .controller import SyncOrchestrator, SyncResult
from .display import DisplayManager
from .protocol import ProtocolRevision
from .transport import BleakTransport, clear_address_cache

logger = logging.getLogger(__name__)


def _parse_switch(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("on", "1", "true", "yes"):
        return True
    if lowered in ("off", "0", "false", "no"):
        return False
    raise ValueError(f"Expected on/off, got {value}")


class DbsCtrlREPL:
    """Interactive REPL for stimulation cap control."""

    def __init__(self, orchestrator: SyncOrchestrator) -> None:
        """Initialize REPL with orchestrator and display manager."""
        self.orchestrator = orchestrator
        self.display = DisplayManager()
        self.running = False

        self.orchestrator.set_on_disconnect(self._on_device_disconnect)

        # Create prompt session with auto-completion
        self.session: PromptSession = PromptSession(
            completer=CommandCompleter(orchestrator.revision),
            history=InMemoryHistory(),
            enable_history_search=True,
        )

        # Background task applying unsolicited frames
        self._update_task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        """Run the main REPL loop."""
        self.running = True
        self.display.print_banner()

        # Auto-connect to node on startup
        self.display.console.print("Attempting to connect to node...")
        result = await self.orchestrator.connect()
        self.display.print_connect_result(result, self.orchestrator.is_connected)
        self.display.console.print()

        self._update_task = asyncio.create_task(self._update_loop())

        try:
            while self.running:
                try:
                    text = await self.session.prompt_async(self._get_prompt())
                    if text.strip():
                        await self._handle_input(text.strip())

                except KeyboardInterrupt:
                    # Just show new prompt on Ctrl+C
                    self.display.console.print()
                    continue

        except EOFError:
            # End of input (Ctrl+D)
            await self.cmd_quit([])
        finally:
            self.running = False
            if self._update_task:
                self._update_task.cancel()
                try:
                    await self._update_task
                except asyncio.CancelledError:
                    pass

    def _get_prompt(self) -> FormattedText:
        """Get dynamic prompt based on connection and sync state.

        Returns:
            FormattedText for prompt_toolkit
        """
        if not self.orchestrator.is_connected:
            return FormattedText([("class:prompt", "[disconnected] > ")])

        name = getattr(self.orchestrator.transport, "name", "Node")
        marker = "*" if self.orchestrator.needs_sync else ""
        return FormattedText([("class:prompt", f"[{name}{marker}] > ")])

    async def _handle_input(self, text: str) -> None:
        """Parse and dispatch command.

        Args:
            text: Raw user input text
        """
        parts = text.split(maxsplit=1)
        if not parts:
            return

        cmd_name = parts[0].lower()
        args = parts[1].split() if len(parts) > 1 else []

        cmd = get_command(cmd_name)
        if not cmd:
            self.display.print_error(
                f"Unknown command: {cmd_name}. Type 'help' for available commands."
            )
            return

        handler = getattr(self, cmd.handler, None)
        if handler is None:
            self.display.print_error(f"Handler not found: {cmd.handler}")
            return

        try:
            await handler(args)
        except Exception as e:
            self.display.print_error(f"Command failed: {e}")
            logger.exception("Command exception")

    async def _update_loop(self) -> None:
        """Background task applying frames the node sends on its own."""
        try:
            while self.running:
                if not self.orchestrator.is_connected:
                    await asyncio.sleep(0.5)
                    continue
                async for state in self.orchestrator.updates():
                    logger.debug(f"Node update: {state}")
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Update loop error: {e}")

    def _on_device_disconnect(self) -> None:
        """Callback when node disconnects."""
        self.display.print_info("Node disconnected")

    def _edit(self, label: str, **changes) -> None:  # type: ignore[no-untyped-def]
        self.orchestrator.edit(**changes)
        status = self.orchestrator.get_status()
        suffix = " (sync required)" if status["needs_sync"] else ""
        name, _ = next(iter(changes.items()))
        value = status.get(name, getattr(self.orchestrator.state, name))
        self.display.print_info(f"{label}: {value}{suffix}")

    def _parse_int(self, args: list, usage: str) -> Optional[int]:
        if not args:
            self.display.print_error(f"Usage: {usage}")
            return None
        try:
            return int(args[0])
        except ValueError:
            self.display.print_error(f"Invalid value: {args[0]}")
            return None

    # ========== Command Handlers ==========

    async def cmd_connect(self, args: list) -> None:
        """Connect to node."""
        if self.orchestrator.is_connected:
            self.display.print_info("Already connected")
            return

        self.display.print_info("Scanning for node...")
        result = await self.orchestrator.connect()
        self.display.print_connect_result(result, self.orchestrator.is_connected)
        if result == SyncResult.SUCCESS:
            await self.cmd_status([])

    async def cmd_disconnect(self, args: list) -> None:
        """Disconnect from node."""
        if not self.orchestrator.is_connected:
            self.display.print_info("Not connected")
            return

        await self.orchestrator.disconnect()
        self.display.print_info("Disconnected")

    async def cmd_amplitude(self, args: list) -> None:
        value = self._parse_int(args, "amplitude <0-100>")
        if value is not None:
            self._edit("Amplitude", amplitude=value)

    async def cmd_frequency(self, args: list) -> None:
        value = self._parse_int(args, "frequency <Hz>")
        if value is not None:
            self._edit("Frequency", frequency_hz=value)

    async def cmd_pulse(self, args: list) -> None:
        value = self._parse_int(args, "pulse <duration>")
        if value is not None:
            self._edit("Pulse duration", pulse_duration_us=value)

    async def cmd_activate(self, args: list) -> None:
        if not args:
            self.display.print_error("Usage: activate <on|off>")
            return
        try:
            enabled = _parse_switch(args[0])
        except ValueError as e:
            self.display.print_error(str(e))
            return
        self._edit("Activate stimulation", activate_on_disconnect=enabled)

    async def cmd_cap(self, args: list) -> None:
        value = self._parse_int(args, "cap <00-99>")
        if value is not None:
            self._edit("Cap ID", cap_id=value)

    async def cmd_sync(self, args: list) -> None:
        """Push settings to node."""
        result = await self.orchestrator.sync()
        self.display.print_result("sync", result)

    async def cmd_read(self, args: list) -> None:
        """Read settings from node."""
        result = await self.orchestrator.read()
        self.display.print_result("read", result)
        if result == SyncResult.SUCCESS:
            await self.cmd_status([])

    async def cmd_led(self, args: list) -> None:
        result = await self.orchestrator.toggle_led()
        self.display.print_result("led", result)

    async def cmd_status(self, args: list) -> None:
        """Show current settings."""
        self.display.print_status(self.orchestrator.get_status())

    async def cmd_log(self, args: list) -> None:
        """Show event log, or its plain text with 'log raw'."""
        if args and args[0].lower() == "raw":
            self.display.print_raw(self.orchestrator.event_log.text())
        else:
            self.display.print_log(self.orchestrator.event_log.messages)

    async def cmd_help(self, args: list) -> None:
        """Show all available commands."""
        self.display.print_help(COMMANDS)

    async def cmd_quit(self, args: list) -> None:
        """Exit the REPL."""
        if self.orchestrator.is_connected:
            if self.orchestrator.needs_sync:
                self.display.print_info("Unsynced changes discarded")
            self.display.print_info("Disconnecting...")
            await self.orchestrator.disconnect()

        self.display.console.print("[cyan]Goodbye![/cyan]")
        self.running = False


async def run_cli_command(
    orchestrator: SyncOrchestrator, command: str, changes: dict
) -> None:
    """Run a single CLI command and exit."""
    display = DisplayManager()

    try:
        display.print_info("Connecting to node...")
        result = await orchestrator.connect()
        if result != SyncResult.SUCCESS:
            # Never push or report settings that were not read from the node
            display.print_connect_result(result, orchestrator.is_connected)
            sys.exit(1)

        if command == "read":
            display.print_status(orchestrator.get_status())

        elif command == "led":
            result = await orchestrator.toggle_led()
            display.print_result("led", result)

        elif command == "sync":
            orchestrator.edit(**changes)
            result = await orchestrator.sync()
            display.print_result("sync", result)
            if result != SyncResult.SUCCESS:
                sys.exit(1)

        else:
            display.print_error(f"Unknown command: {command}")
            sys.exit(1)

    finally:
        if orchestrator.is_connected:
            await orchestrator.disconnect()


def main() -> None:
    """Entry point for the REPL application."""
    parser = argparse.ArgumentParser(
        description="Stimulation cap control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  dbsctrl                         # Start interactive REPL
  dbsctrl --read                  # Show node settings (auto-connects)
  dbsctrl --amplitude 40 --frequency 130   # Push settings
  dbsctrl --led                   # Toggle node LED
  dbsctrl --revision legacy       # Talk to legacy firmware
  dbsctrl --clear-cache           # Clear cached device address
        """,
    )

    parser.add_argument(
        "--revision",
        choices=[revision.value for revision in ProtocolRevision],
        default=ProtocolRevision.CURRENT.value,
        help="Node firmware protocol (default: current)",
    )
    parser.add_argument("--address", type=str, help="Connect to specific address")
    parser.add_argument(
        "--scan-timeout", type=float, default=10.0, help="Scan timeout in seconds"
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    parser.add_argument("--read", action="store_true", help="Show node settings")
    parser.add_argument("--led", action="store_true", help="Toggle node LED")
    parser.add_argument(
        "--clear-cache", action="store_true", help="Clear cached device address"
    )

    parser.add_argument("--amplitude", type=int, help="Amplitude in percent (0-100)")
    parser.add_argument("--frequency", type=int, help="Frequency in Hz")
    parser.add_argument("--pulse", type=int, help="Pulse duration")
    parser.add_argument("--cap", type=int, help="Cap ID (0-99)")
    parser.add_argument(
        "--activate", choices=["on", "off"], help="Keep stimulating after disconnect"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(message)s",
    )

    if args.clear_cache:
        clear_address_cache()
        DisplayManager().print_info("Cleared cached device address")
        return

    changes = {}
    if args.amplitude is not None:
        changes["amplitude"] = args.amplitude
    if args.frequency is not None:
        changes["frequency_hz"] = args.frequency
    if args.pulse is not None:
        changes["pulse_duration_us"] = args.pulse
    if args.cap is not None:
        changes["cap_id"] = args.cap
    if args.activate is not None:
        changes["activate_on_disconnect"] = args.activate == "on"

    commands = []
    if args.read:
        commands.append("read")
    if args.led:
        commands.append("led")
    if changes:
        commands.append("sync")

    if len(commands) > 1:
        print("Error: Only one command can be specified at a time", file=sys.stderr)
        sys.exit(1)

    transport = BleakTransport(address=args.address, scan_timeout=args.scan_timeout)
    orchestrator = SyncOrchestrator(transport, revision=ProtocolRevision(args.revision))

    try:
        if not commands:
            asyncio.run(DbsCtrlREPL(orchestrator).run())
        else:
            asyncio.run(run_cli_command(orchestrator, commands[0], changes))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
