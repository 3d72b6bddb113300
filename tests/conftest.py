"""Shared fixtures: an in-memory transport standing in for the BLE node."""

import asyncio
from typing import Callable, Dict, List, Optional

import pytest

from dbsctrl.transport import TransportError


class FakeTransport:
    """Scriptable Transport that records writes and replays frames.

    ``responses`` maps a written command to the frame the node answers
    with; the ``None`` key answers a characteristic read.
    """

    def __init__(
        self,
        payload_limit: int = 26,
        responses: Optional[Dict[Optional[str], str]] = None,
    ) -> None:
        self.connected = False
        self.connect_ok = True
        self.fail_writes = False
        self.payload_limit = payload_limit
        self.responses = dict(responses or {})
        self.writes: List[str] = []
        self.reads = 0
        self.write_gate: Optional[asyncio.Event] = None
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._on_disconnect: Optional[Callable[[], None]] = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    @property
    def is_connecting(self) -> bool:
        return False

    async def connect(self) -> bool:
        self.connected = self.connect_ok
        return self.connect_ok

    async def disconnect(self) -> None:
        if self.connected:
            self.drop()

    async def write(self, payload: str) -> None:
        if not self.connected:
            raise TransportError("Not connected")
        if self.fail_writes:
            raise TransportError("Write failed: GATT error")
        if self.write_gate is not None:
            await self.write_gate.wait()
        self.writes.append(payload)
        if payload in self.responses:
            self._inbound.put_nowait(self.responses[payload])

    async def read(self) -> None:
        if not self.connected:
            raise TransportError("Not connected")
        self.reads += 1
        if None in self.responses:
            self._inbound.put_nowait(self.responses[None])

    async def receive(self, timeout: float) -> str:
        frame = await asyncio.wait_for(self._inbound.get(), timeout=timeout)
        if frame is None:
            raise TransportError("Disconnected")
        return frame

    def drain(self) -> int:
        dropped = 0
        while not self._inbound.empty():
            frame = self._inbound.get_nowait()
            if frame is None:
                self._inbound.put_nowait(None)
                break
            dropped += 1
        return dropped

    def max_payload_length(self) -> int:
        return self.payload_limit

    def set_on_disconnect(self, callback: Callable[[], None]) -> None:
        self._on_disconnect = callback

    def notify(self, frame: str) -> None:
        """Simulate an unsolicited notification from the node."""
        self._inbound.put_nowait(frame)

    def drop(self) -> None:
        """Simulate the link going away."""
        self.connected = False
        self._inbound.put_nowait(None)
        if self._on_disconnect:
            self._on_disconnect()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport(
        responses={
            "_1": "_A40,F140,P120,G1,N12",
            "_2": "_V2100",
        }
    )


@pytest.fixture
def legacy_transport() -> FakeTransport:
    return FakeTransport(responses={None: "_A1500,F100,P20,G0"})


@pytest.fixture
def make_transport() -> Callable[..., FakeTransport]:
    """Factory for transports already connected, with custom limits/responses."""

    def factory(**kwargs) -> FakeTransport:  # type: ignore[no-untyped-def]
        fake = FakeTransport(**kwargs)
        fake.connected = True
        return fake

    return factory
