"""
DbsCtrl - BLE Stimulation Cap Control Library

A Python library for configuring stimulation caps over Bluetooth LE.
"""

__version__ = "0.1.0"
__description__ = "CLI and REPL interface for configuring BLE stimulation caps"

from .battery import BatteryMapper, millivolts_to_percent
from .controller import SyncOrchestrator, SyncResult
from .eventlog import EventLog
from .protocol import (
    ControlState,
    DecodeResult,
    FormatError,
    PayloadTooLarge,
    ProtocolRevision,
    decode,
    encode,
)
from .sync import SyncState, SyncTracker
from .transport import BleakTransport, Transport, TransportError

__all__ = [
    "BatteryMapper",
    "BleakTransport",
    "ControlState",
    "DecodeResult",
    "EventLog",
    "FormatError",
    "PayloadTooLarge",
    "ProtocolRevision",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "SyncTracker",
    "Transport",
    "TransportError",
    "decode",
    "encode",
    "millivolts_to_percent",
]
