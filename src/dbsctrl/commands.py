"""
Command definitions and auto-completion for REPL.

Defines all available commands with metadata and provides a completer
for prompt_toolkit auto-completion.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .core import (
    CAP_ID_MAX,
    CAP_ID_MIN,
    FREQUENCY_MAX,
    FREQUENCY_MIN,
    FREQUENCY_STEP,
    PULSE_STEP,
)
from .protocol import ProtocolRevision


@dataclass
class Command:
    """Command definition with metadata."""

    name: str
    aliases: List[str]
    description: str
    usage: str
    handler: str


# Define all available commands
COMMANDS = [
    Command(
        name="connect",
        aliases=["c"],
        description="Connect to node and read its settings",
        usage="connect",
        handler="cmd_connect",
    ),
    Command(
        name="disconnect",
        aliases=["dc"],
        description="Disconnect from node",
        usage="disconnect",
        handler="cmd_disconnect",
    ),
    Command(
        name="amplitude",
        aliases=["a", "amp"],
        description="Set amplitude in percent of scale",
        usage="amplitude <0-100>",
        handler="cmd_amplitude",
    ),
    Command(
        name="frequency",
        aliases=["f", "freq"],
        description="Set stimulation frequency in Hz",
        usage="frequency <Hz>",
        handler="cmd_frequency",
    ),
    Command(
        name="pulse",
        aliases=["p"],
        description="Set pulse duration",
        usage="pulse <duration>",
        handler="cmd_pulse",
    ),
    Command(
        name="activate",
        aliases=["g"],
        description="Keep stimulating after disconnect",
        usage="activate <on|off>",
        handler="cmd_activate",
    ),
    Command(
        name="cap",
        aliases=["n"],
        description="Set cap ID",
        usage="cap <00-99>",
        handler="cmd_cap",
    ),
    Command(
        name="sync",
        aliases=["s"],
        description="Push settings to node",
        usage="sync",
        handler="cmd_sync",
    ),
    Command(
        name="read",
        aliases=["r"],
        description="Read settings and battery from node",
        usage="read",
        handler="cmd_read",
    ),
    Command(
        name="led",
        aliases=["l"],
        description="Toggle node LED",
        usage="led",
        handler="cmd_led",
    ),
    Command(
        name="status",
        aliases=["st"],
        description="Show current settings",
        usage="status",
        handler="cmd_status",
    ),
    Command(
        name="log",
        aliases=["t"],
        description="Show event log (raw: plain text for copying)",
        usage="log [raw]",
        handler="cmd_log",
    ),
    Command(
        name="help",
        aliases=["h", "?"],
        description="Show all available commands",
        usage="help",
        handler="cmd_help",
    ),
    Command(
        name="quit",
        aliases=["q", "exit"],
        description="Exit the REPL",
        usage="quit",
        handler="cmd_quit",
    ),
]


def get_command(name: str) -> Command | None:
    """Get command by name or alias.

    Args:
        name: Command name or alias

    Returns:
        Command object if found, None otherwise
    """
    for cmd in COMMANDS:
        if cmd.name == name or name in cmd.aliases:
            return cmd
    return None


def _value_suggestions(revision: ProtocolRevision) -> Dict[str, List[str]]:
    grammar = revision.grammar
    pulse = grammar.field_named("pulse_duration_us")
    values = {
        "amplitude": [str(pct) for pct in range(0, 101, 10)],
        "frequency": [
            str(hz) for hz in range(FREQUENCY_MIN, FREQUENCY_MAX + 1, FREQUENCY_STEP)
        ],
        "activate": ["on", "off"],
        "log": ["raw"],
    }
    if pulse is not None:
        step = PULSE_STEP if pulse.maximum - pulse.minimum > PULSE_STEP * 10 else 10
        values["pulse"] = [
            str(value) for value in range(pulse.minimum, pulse.maximum + 1, step)
        ]
    if grammar.field_named("cap_id") is not None:
        values["cap"] = [f"{cap:02d}" for cap in range(CAP_ID_MIN, CAP_ID_MAX + 1)]
    return values


class CommandCompleter(Completer):
    """Auto-completion for commands and arguments."""

    def __init__(self, revision: ProtocolRevision = ProtocolRevision.CURRENT) -> None:
        """Initialize completer.

        Args:
            revision: Firmware generation whose ranges are suggested
        """
        self._command_names = set()
        self._command_aliases = set()
        self._values = _value_suggestions(revision)

        for cmd in COMMANDS:
            self._command_names.add(cmd.name)
            self._command_aliases.update(cmd.aliases)

    def get_completions(self, document: Document, complete_event) -> Any:  # type: ignore[no-untyped-def]
        """Get completion suggestions for current input.

        Args:
            document: Current input document
            complete_event: Completion event

        Yields:
            Completion objects for matching commands/arguments
        """
        text = document.text_before_cursor.lstrip()
        parts = text.split()

        # If no text yet, suggest nothing (avoid spam)
        if not text:
            return

        # First part: complete command name
        if len(parts) == 1 and not text.endswith(" "):
            partial_cmd = parts[0].lower()
            all_names = self._command_names | self._command_aliases

            for name in sorted(all_names):
                if name.startswith(partial_cmd):
                    completion = name[len(partial_cmd) :]
                    yield Completion(
                        completion,
                        start_position=0,
                        display=f"({name})",
                    )
            return

        # Second part: suggest values for setting commands
        cmd = get_command(parts[0].lower())
        if cmd is None or cmd.name not in self._values:
            return

        partial = "" if text.endswith(" ") else parts[-1].lower()
        for value in self._values[cmd.name]:
            if value.startswith(partial):
                yield Completion(
                    value[len(partial) :],
                    start_position=0,
                    display=value,
                )
