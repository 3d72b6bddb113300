"""
Sync orchestration between local settings and a connected node.

SyncOrchestrator owns the ControlState and SyncTracker for one session and
drives two workflows over a Transport:

- read: request configuration, receive frames, decode, apply, mark Clean
- push: encode current settings, check the payload limit, write, mark Clean

Only one transport exchange is outstanding at a time; the protocol has no
request id, so a second command before a response would be ambiguous.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, AsyncGenerator, Callable, Optional

from .battery import DEFAULT_BATTERY, BatteryMapper
from .core import APP_NAME, RECEIVE_TIMEOUT, SETTLE_DELAY
from .eventlog import EventLog
from .protocol import (
    LED_TOGGLE_COMMAND,
    ControlState,
    PayloadTooLarge,
    ProtocolRevision,
    decode,
    encode,
)
from .sync import SyncTracker
from .transport import Transport, TransportError

logger = logging.getLogger(__name__)


class SyncResult(Enum):
    """Outcome of an orchestrator operation."""

    SUCCESS = "success"
    NOT_CONNECTED = "not_connected"
    INVALID_PARAMETER = "invalid_parameter"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    TRANSPORT_ERROR = "transport_error"
    FORMAT_ERROR = "format_error"
    TIMEOUT = "timeout"


class SyncOrchestrator:
    """Keeps a node's stimulation settings in step with the operator's."""

    def __init__(
        self,
        transport: Transport,
        event_log: Optional[EventLog] = None,
        revision: ProtocolRevision = ProtocolRevision.CURRENT,
        settle_delay: float = SETTLE_DELAY,
        receive_timeout: float = RECEIVE_TIMEOUT,
        battery: BatteryMapper = DEFAULT_BATTERY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize orchestrator with default settings and a Clean tracker.

        Args:
            transport: Link to the node
            event_log: Scrollback for operator-visible events (created if None)
            revision: Firmware generation of the node
            settle_delay: Seconds after connect/ingest during which edits are ignored
            receive_timeout: Seconds to wait for each requested frame
            battery: Calibration for battery telemetry
            clock: Monotonic time source for the settling window
        """
        self.transport = transport
        self.event_log = event_log if event_log is not None else EventLog()
        self.revision = revision
        self.receive_timeout = receive_timeout
        self.battery = battery
        self.state = ControlState.defaults(revision)
        self.tracker = SyncTracker(settle_delay=settle_delay, clock=clock)

        self._lock = asyncio.Lock()
        self._disconnecting = False

        # Callbacks
        self._on_change: Optional[Callable[[ControlState], None]] = None
        self._on_disconnect: Optional[Callable[[], None]] = None

        self.transport.set_on_disconnect(self._on_transport_disconnect)
        self.event_log.append(f"Hello, {APP_NAME}.")

    @property
    def is_connected(self) -> bool:
        return self.transport.is_connected

    @property
    def needs_sync(self) -> bool:
        """True when local edits have not been pushed."""
        return self.tracker.dirty

    def set_on_change(self, callback: Callable[[ControlState], None]) -> None:
        """Set callback for settings changed by a received frame."""
        self._on_change = callback

    def set_on_disconnect(self, callback: Callable[[], None]) -> None:
        self._on_disconnect = callback

    def payload_limit(self) -> int:
        """Longest command the node accepts in this session."""
        fixed = self.revision.grammar.fixed_payload_length
        if fixed is not None:
            return fixed
        return self.transport.max_payload_length()

    async def connect(self) -> SyncResult:
        """Connect, open the settling window and read the node's settings.

        Returns:
            TRANSPORT_ERROR if the link could not be opened. Otherwise the
            result of the initial read, so a TIMEOUT or FORMAT_ERROR here
            means the link is up (``is_connected``) but no settings arrived.
        """
        if self.transport.is_connected or self.transport.is_connecting:
            logger.warning("Already connected")
            return SyncResult.SUCCESS

        self.event_log.append("Connecting...")
        if not await self.transport.connect():
            self.event_log.append("Connection failed")
            return SyncResult.TRANSPORT_ERROR

        self.tracker.suppress()
        self.event_log.append(f"Connected ({self.revision.value} firmware)")
        return await self.read()

    async def disconnect(self) -> None:
        """Disconnect and reset the session state."""
        self._disconnecting = True
        try:
            await self.transport.disconnect()
        finally:
            self._disconnecting = False
        self._reset_session()
        self.event_log.append("Disconnected")

    def edit(self, **changes: Any) -> bool:
        """Apply operator edits, clamped to the revision's ranges.

        Args:
            **changes: ControlState field names and new values

        Returns:
            True if any field changed

        Raises:
            ValueError: If a field is not editable on this revision or a
                value is not an integer. Nothing is applied in that case.
        """
        grammar = self.revision.grammar
        converted = []
        for name, value in changes.items():
            spec = grammar.field_named(name)
            if spec is None:
                raise ValueError(
                    f"{name} is not supported by {self.revision.value} firmware"
                )
            converted.append((name, spec.kind(spec.clamp(int(value)))))

        changed = False
        for name, value in converted:
            if getattr(self.state, name) == value:
                continue
            setattr(self.state, name, value)
            changed = True

        if changed:
            self.tracker.mark_edited()
        return changed

    async def sync(self) -> SyncResult:
        """Push the current settings to the node.

        Returns:
            SyncResult; the tracker stays Dirty unless this is SUCCESS
        """
        if not self.transport.is_connected:
            self.event_log.append("Not connected")
            return SyncResult.NOT_CONNECTED

        async with self._lock:
            try:
                command = encode(self.state, self.revision)
            except ValueError as e:
                logger.error(f"Encode failed: {e}")
                self.event_log.append(f"Invalid setting: {e}")
                return SyncResult.INVALID_PARAMETER

            try:
                self.tracker.check_payload(command, self.payload_limit())
            except PayloadTooLarge as e:
                logger.error(str(e))
                self.event_log.append(str(e))
                return SyncResult.PAYLOAD_TOO_LARGE
            except TransportError as e:
                self.event_log.append(f"Sync failed: {e}")
                return SyncResult.TRANSPORT_ERROR

            token = self.tracker.begin_push()
            try:
                await self.transport.write(command)
            except TransportError as e:
                logger.error(f"Sync failed: {e}")
                self.event_log.append(f"Sync failed: {e}")
                return SyncResult.TRANSPORT_ERROR

            self.tracker.push_succeeded(token)
            logger.info(f"Synced: {command}")
            self.event_log.append(f"Synced: {command}")
            return SyncResult.SUCCESS

    async def read(self) -> SyncResult:
        """Request the node's configuration and apply what comes back.

        Current firmware answers ``_1`` and ``_2`` with one frame each; legacy
        firmware is read directly from the characteristic.
        """
        if not self.transport.is_connected:
            self.event_log.append("Not connected")
            return SyncResult.NOT_CONNECTED

        async with self._lock:
            requests = self.revision.grammar.request_commands or (None,)
            for request in requests:
                result = await self._request(request)
                if result is not SyncResult.SUCCESS:
                    return result
            return SyncResult.SUCCESS

    async def toggle_led(self) -> SyncResult:
        """Toggle the node's indicator LED. No response is expected."""
        if not self.transport.is_connected:
            self.event_log.append("Not connected")
            return SyncResult.NOT_CONNECTED

        async with self._lock:
            try:
                await self.transport.write(LED_TOGGLE_COMMAND)
            except TransportError as e:
                self.event_log.append(f"LED toggle failed: {e}")
                return SyncResult.TRANSPORT_ERROR
            self.event_log.append("Toggled LED")
            return SyncResult.SUCCESS

    def apply_frame(self, raw: str) -> bool:
        """Decode one received frame and apply it without marking Dirty.

        Returns:
            False if the frame was discarded for a bad prefix
        """
        self.event_log.append("Syncing node...")
        self.event_log.append(raw)

        result = decode(raw, self.revision, self.battery)
        if not result.valid:
            logger.warning(f"Discarded frame: {result.error}")
            self.event_log.append(f"Discarded frame: {result.error}")
            return False
        if result.skipped:
            logger.debug(f"Skipped segments: {', '.join(result.skipped)}")

        self.tracker.begin_ingest()
        changed = self.state.apply(result.updates)
        self.tracker.ingest_complete()

        if changed and self._on_change:
            try:
                self._on_change(self.state)
            except Exception as e:
                logger.error(f"Change callback error: {e}")
        return True

    async def updates(self) -> AsyncGenerator[ControlState, None]:
        """Async generator applying unsolicited frames as they arrive.

        Yields:
            The ControlState after each applied frame
        """
        while self.transport.is_connected:
            async with self._lock:
                try:
                    raw = await self.transport.receive(timeout=0.5)
                except asyncio.TimeoutError:
                    # Continue - node may be idle
                    continue
                except TransportError:
                    break
                applied = self.apply_frame(raw)
            if applied:
                yield self.state

    def get_status(self) -> dict:
        """Snapshot of settings and session state for display."""
        status = {
            "connected": self.transport.is_connected,
            "revision": self.revision.value,
            "amplitude": self.state.amplitude,
            "frequency_hz": self.state.frequency_hz,
            "pulse_duration_us": self.state.pulse_duration_us,
            "activate_on_disconnect": self.state.activate_on_disconnect,
            "battery_percent": self.state.battery_percent,
            "needs_sync": self.tracker.dirty,
            "suppressed": self.tracker.suppressed,
        }
        if self.revision.grammar.field_named("cap_id") is not None:
            status["cap_id"] = self.state.cap_id_text
        return status

    async def _request(self, command: Optional[str]) -> SyncResult:
        # A frame left over from an earlier timed-out request is not our answer
        stale = self.transport.drain()
        if stale:
            logger.warning(f"Dropped {stale} stale frame(s) before request")
        try:
            if command is None:
                await self.transport.read()
            else:
                await self.transport.write(command)
            raw = await self.transport.receive(timeout=self.receive_timeout)
        except asyncio.TimeoutError:
            logger.error("Timed out waiting for node")
            self.event_log.append("No response from node")
            return SyncResult.TIMEOUT
        except TransportError as e:
            logger.error(f"Read failed: {e}")
            self.event_log.append(f"Read failed: {e}")
            return SyncResult.TRANSPORT_ERROR

        if not self.apply_frame(raw):
            return SyncResult.FORMAT_ERROR
        return SyncResult.SUCCESS

    def _reset_session(self) -> None:
        self.tracker.reset()
        self.state.activate_on_disconnect = False
        self.state.battery_percent = None

    def _on_transport_disconnect(self) -> None:
        self._reset_session()
        if self._disconnecting:
            return
        self.event_log.append("Device disconnected")
        if self._on_disconnect:
            try:
                self._on_disconnect()
            except Exception as e:
                logger.error(f"Disconnect callback error: {e}")
