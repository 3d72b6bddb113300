"""
Text command codec for stimulation cap firmware.

Frames are short ASCII strings such as ``_A50,F130,P90,G0,N7``: a leading
underscore followed by comma-separated fields, each a one-letter tag and a
decimal value. The tag set, ranges and amplitude units differ between
firmware generations, so every operation takes a ProtocolRevision.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .battery import DEFAULT_BATTERY, BatteryMapper
from .core import (
    AMPLITUDE_DEFAULT,
    AMPLITUDE_MAX,
    AMPLITUDE_MIN,
    CAP_ID_DEFAULT,
    CAP_ID_MAX,
    CAP_ID_MIN,
    FREQUENCY_DEFAULT,
    FREQUENCY_MAX,
    FREQUENCY_MIN,
    NODE_CHARACTERISTIC_LENGTH,
)

FRAME_PREFIX = "_"
FIELD_SEPARATOR = ","
BATTERY_TAG = "V"
LED_TOGGLE_COMMAND = "_L1"

_DIGITS_RE = re.compile(r"[0-9]+")


class FormatError(ValueError):
    """Raised when a frame does not start with the protocol prefix."""


class PayloadTooLarge(ValueError):
    """Raised when an encoded command does not fit the transport payload."""

    def __init__(self, command: str, limit: int) -> None:
        self.command = command
        self.length = len(command)
        self.limit = limit
        super().__init__(
            f"Command exceeds characteristic length ({self.length} > {limit}): {command}"
        )


@dataclass(frozen=True)
class FieldSpec:
    """One tagged field of the wire format.

    Ranges are in internal units. ``wire_scale`` is the number of wire units
    per internal unit (legacy firmware sends amplitude in microamps).
    """

    tag: str
    name: str
    minimum: int
    maximum: int
    wire_scale: int = 1
    kind: type = int

    def contains(self, value: int) -> bool:
        return self.minimum <= value <= self.maximum

    def clamp(self, value: int) -> int:
        return min(max(int(value), self.minimum), self.maximum)

    def to_wire(self, value: int) -> int:
        if not self.contains(value):
            raise ValueError(
                f"{self.name}={value} outside [{self.minimum}, {self.maximum}]"
            )
        return value * self.wire_scale

    def from_wire(self, raw: int) -> Optional[Any]:
        """Convert a wire value, or return None when it is out of range."""
        if not self.minimum * self.wire_scale <= raw <= self.maximum * self.wire_scale:
            return None
        return self.kind((raw + self.wire_scale // 2) // self.wire_scale)


@dataclass(frozen=True)
class Grammar:
    """Tag set and numeric semantics of one firmware generation."""

    fields: Tuple[FieldSpec, ...]
    battery: bool
    request_commands: Tuple[str, ...]
    fixed_payload_length: Optional[int]
    pulse_default: int

    def field_for(self, tag: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.tag == tag:
                return spec
        return None

    def field_named(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    @property
    def tags(self) -> Tuple[str, ...]:
        tags = tuple(spec.tag for spec in self.fields)
        return tags + (BATTERY_TAG,) if self.battery else tags


_ACTIVATE = FieldSpec("G", "activate_on_disconnect", 0, 1, kind=bool)
_FREQUENCY = FieldSpec("F", "frequency_hz", FREQUENCY_MIN, FREQUENCY_MAX)

_LEGACY = Grammar(
    fields=(
        # 0-3000 uA on the wire, 30 uA per percent
        FieldSpec("A", "amplitude", AMPLITUDE_MIN, AMPLITUDE_MAX, wire_scale=30),
        _FREQUENCY,
        FieldSpec("P", "pulse_duration_us", 10, 100),
        _ACTIVATE,
    ),
    battery=False,
    request_commands=(),
    fixed_payload_length=NODE_CHARACTERISTIC_LENGTH,
    pulse_default=50,
)

_CURRENT = Grammar(
    fields=(
        FieldSpec("A", "amplitude", AMPLITUDE_MIN, AMPLITUDE_MAX),
        _FREQUENCY,
        FieldSpec("P", "pulse_duration_us", 90, 600),
        _ACTIVATE,
        FieldSpec("N", "cap_id", CAP_ID_MIN, CAP_ID_MAX),
    ),
    battery=True,
    request_commands=("_1", "_2"),
    fixed_payload_length=None,
    pulse_default=90,
)


class ProtocolRevision(Enum):
    """Firmware generations the codec understands."""

    LEGACY = "legacy"
    CURRENT = "current"

    @property
    def grammar(self) -> Grammar:
        return _GRAMMARS[self]


_GRAMMARS = {
    ProtocolRevision.LEGACY: _LEGACY,
    ProtocolRevision.CURRENT: _CURRENT,
}


@dataclass
class ControlState:
    """Stimulation settings as known to the controller."""

    amplitude: int = AMPLITUDE_DEFAULT
    frequency_hz: int = FREQUENCY_DEFAULT
    pulse_duration_us: int = _CURRENT.pulse_default
    activate_on_disconnect: bool = False
    cap_id: int = CAP_ID_DEFAULT
    battery_percent: Optional[int] = None

    @classmethod
    def defaults(cls, revision: ProtocolRevision) -> "ControlState":
        return cls(pulse_duration_us=revision.grammar.pulse_default)

    @property
    def cap_id_text(self) -> str:
        return f"{self.cap_id:02d}"

    def apply(self, updates: Dict[str, Any]) -> List[str]:
        """Set fields from a decoded update dict.

        Returns:
            Names of fields whose value changed
        """
        changed = []
        for name, value in updates.items():
            if getattr(self, name) != value:
                setattr(self, name, value)
                changed.append(name)
        return changed


@dataclass
class DecodeResult:
    """Best-effort outcome of decoding one frame."""

    valid: bool
    updates: Dict[str, Any] = field(default_factory=dict)
    error: Optional[FormatError] = None
    skipped: Tuple[str, ...] = ()


def encode(state: ControlState, revision: ProtocolRevision = ProtocolRevision.CURRENT) -> str:
    """Encode the revision's fields of ``state`` as a command frame.

    Field order is fixed by the revision. Values are not clamped: a field
    outside its range raises ValueError.
    """
    parts = []
    for spec in revision.grammar.fields:
        value = int(getattr(state, spec.name))
        parts.append(f"{spec.tag}{spec.to_wire(value)}")
    return FRAME_PREFIX + FIELD_SEPARATOR.join(parts)


def decode(
    raw: str,
    revision: ProtocolRevision = ProtocolRevision.CURRENT,
    battery: BatteryMapper = DEFAULT_BATTERY,
) -> DecodeResult:
    """Extract field updates from a received frame.

    Segments that are too short, carry a non-numeric value, use a tag the
    revision does not know, or hold an out-of-range value are skipped.
    Only a missing prefix invalidates the frame.

    Args:
        raw: One complete frame as received
        revision: Grammar to decode with
        battery: Calibration for the ``V`` millivolt tag

    Returns:
        DecodeResult with the updates keyed by ControlState field name
    """
    if not raw.startswith(FRAME_PREFIX):
        return DecodeResult(
            valid=False,
            error=FormatError(f"Frame does not start with '{FRAME_PREFIX}': {raw!r}"),
        )

    grammar = revision.grammar
    updates: Dict[str, Any] = {}
    skipped: List[str] = []

    for segment in raw[len(FRAME_PREFIX) :].split(FIELD_SEPARATOR):
        if len(segment) < 2:
            if segment:
                skipped.append(segment)
            continue

        tag, digits = segment[0], segment[1:]
        if not _DIGITS_RE.fullmatch(digits):
            skipped.append(segment)
            continue
        value = int(digits)

        if tag == BATTERY_TAG and grammar.battery:
            updates["battery_percent"] = battery.millivolts_to_percent(value)
            continue

        spec = grammar.field_for(tag)
        converted = spec.from_wire(value) if spec is not None else None
        if converted is None:
            skipped.append(segment)
            continue
        updates[spec.name] = converted

    return DecodeResult(valid=True, updates=updates, skipped=tuple(skipped))


def parse_frame(
    raw: str, revision: ProtocolRevision = ProtocolRevision.CURRENT
) -> Dict[str, Any]:
    """Strict form of decode() that raises FormatError on a bad prefix."""
    result = decode(raw, revision)
    if result.error is not None:
        raise result.error
    return result.updates
