"""
BLE transport for the node's command characteristic.

Wraps a bleak client behind the small Transport interface the sync
orchestrator consumes: connect/disconnect, write one command string, and
an inbound channel delivering one received frame per notification or read.
"""

import asyncio
import json
import logging
import os
import platform
from pathlib import Path
from typing import Callable, Optional, Protocol

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from .core import NODE_RX_UUID, NODE_SERVICE_UUID, NODE_TX_UUID

logger = logging.getLogger(__name__)

# ATT header overhead subtracted from the negotiated MTU
ATT_HEADER_SIZE = 3


class TransportError(Exception):
    """A write, read or receive failed at the transport boundary."""


class Transport(Protocol):
    """Capabilities the orchestrator needs from a device link."""

    @property
    def is_connected(self) -> bool: ...

    @property
    def is_connecting(self) -> bool: ...

    async def connect(self) -> bool: ...

    async def disconnect(self) -> None: ...

    async def write(self, payload: str) -> None:
        """Send one command. Raises TransportError on failure."""
        ...

    async def read(self) -> None:
        """Request the current characteristic value onto the inbound channel."""
        ...

    async def receive(self, timeout: float) -> str:
        """Next inbound frame. Raises asyncio.TimeoutError or TransportError."""
        ...

    def drain(self) -> int:
        """Discard frames already queued, returning how many were dropped."""
        ...

    def max_payload_length(self) -> int: ...

    def set_on_disconnect(self, callback: Callable[[], None]) -> None: ...


def _get_cache_file() -> Path:
    """Get the standard cache file location for device address."""
    # Check XDG_CACHE_HOME first (Linux/Unix standard)
    cache_dir = os.environ.get("XDG_CACHE_HOME")
    if cache_dir:
        cache_path = Path(cache_dir) / "dbsctrl"
    else:
        system = platform.system()
        if system == "Darwin":
            cache_path = Path.home() / "Library" / "Caches" / "dbsctrl"
        elif system == "Windows":
            local_appdata = os.environ.get("LOCALAPPDATA")
            if local_appdata:
                cache_path = Path(local_appdata) / "dbsctrl"
            else:
                appdata = os.environ.get(
                    "APPDATA", str(Path.home() / "AppData" / "Roaming")
                )
                cache_path = Path(appdata) / "dbsctrl"
        else:
            cache_path = Path.home() / ".cache" / "dbsctrl"

    cache_path.mkdir(parents=True, exist_ok=True)
    return cache_path / "device_address.json"


def load_cached_address() -> Optional[str]:
    """Load the last connected device address, if any."""
    try:
        cache_file = _get_cache_file()
        if cache_file.exists():
            with open(cache_file, "r") as f:
                return json.load(f).get("address")
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to load cached address: {e}")
    return None


def save_cached_address(address: str) -> None:
    try:
        with open(_get_cache_file(), "w") as f:
            json.dump({"address": address}, f, indent=2)
        logger.info(f"Cached device address: {address}")
    except OSError as e:
        logger.warning(f"Failed to save cached address: {e}")


def clear_address_cache() -> None:
    """Forget the cached address so the next connect scans again."""
    try:
        cache_file = _get_cache_file()
        if cache_file.exists():
            cache_file.unlink()
            logger.info("Cleared cached device address")
    except OSError as e:
        logger.warning(f"Failed to clear cached address: {e}")


def normalize_frame(data: bytes) -> str:
    """Decode a characteristic value into a frame string."""
    return data.decode("utf-8", errors="replace").rstrip("\x00\r\n ")


class BleakTransport:
    """Transport over the node's RX (write) and TX (read/notify) characteristics."""

    def __init__(
        self,
        address: Optional[str] = None,
        scan_timeout: float = 10.0,
        connect_timeout: float = 10.0,
    ) -> None:
        """Initialize transport with no connection.

        Args:
            address: Connect to this address instead of cache/scan
            scan_timeout: Seconds to scan for a node
            connect_timeout: Seconds to wait for the GATT connection
        """
        self._address = address
        self._scan_timeout = scan_timeout
        self._connect_timeout = connect_timeout
        self._client: Optional[BleakClient] = None
        self._device: Optional[BLEDevice] = None
        self._connecting = False
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._on_disconnect: Optional[Callable[[], None]] = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    @property
    def is_connecting(self) -> bool:
        return self._connecting

    @property
    def name(self) -> str:
        if self._device is not None:
            return self._device.name or self._device.address
        return "Node"

    def set_on_disconnect(self, callback: Callable[[], None]) -> None:
        self._on_disconnect = callback

    async def discover(self) -> bool:
        """Scan for a node advertising the command service.

        Returns:
            True if a device was found
        """
        try:
            logger.info("Scanning for nodes...")
            devices = await BleakScanner.discover(
                timeout=self._scan_timeout, service_uuids=[NODE_SERVICE_UUID]
            )
        except (BleakError, OSError) as e:
            logger.error(f"Discovery failed: {e}")
            return False

        if not devices:
            logger.warning("No nodes found")
            return False

        self._device = devices[0]
        logger.info(f"Found node: {self._device.name or 'Unknown'} ({self._device.address})")
        return True

    async def _find_address(self, address: str) -> bool:
        device = await BleakScanner.find_device_by_address(address, timeout=5.0)
        if device is None:
            return False
        self._device = device
        return True

    async def connect(self) -> bool:
        """Connect to a node.

        Tries the explicit address, then the cached address, then scans.

        Returns:
            True if connected successfully, False otherwise
        """
        if self.is_connected:
            logger.warning("Already connected")
            return True

        self._connecting = True
        try:
            candidate = self._address or load_cached_address()
            found = False
            if candidate:
                logger.info(f"Trying address: {candidate}")
                try:
                    found = await self._find_address(candidate)
                except (BleakError, OSError) as e:
                    logger.warning(f"Address lookup failed: {e}")
            if not found and not await self.discover():
                logger.error("Device discovery failed")
                return False

            self._inbound = asyncio.Queue()
            self._client = BleakClient(
                self._device,
                disconnected_callback=self._on_device_disconnect,
                timeout=self._connect_timeout,
            )
            await self._client.connect()
            await self._client.start_notify(NODE_TX_UUID, self._on_notify)
            logger.info(f"Connected to {self.name}")
            save_cached_address(self._device.address)
            return True

        except (BleakError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"Connection failed: {e}")
            self._client = None
            return False
        finally:
            self._connecting = False

    async def disconnect(self) -> None:
        if self._client is None:
            return

        client = self._client
        try:
            logger.info("Disconnecting...")
            await client.disconnect()
            logger.info("Disconnected")
        except (BleakError, OSError) as e:
            logger.error(f"Disconnect failed: {e}")
        finally:
            # The bleak callback does not fire on every backend for a local disconnect
            if self._client is client:
                self._on_device_disconnect(client)

    async def write(self, payload: str) -> None:
        if not self.is_connected or self._client is None:
            raise TransportError("Not connected")
        try:
            await self._client.write_gatt_char(
                NODE_RX_UUID, payload.encode("ascii"), response=True
            )
        except (BleakError, asyncio.TimeoutError, OSError, UnicodeEncodeError) as e:
            raise TransportError(f"Write failed: {e}") from e

    async def read(self) -> None:
        if not self.is_connected or self._client is None:
            raise TransportError("Not connected")
        try:
            data = await self._client.read_gatt_char(NODE_TX_UUID)
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(f"Read failed: {e}") from e
        self._inbound.put_nowait(normalize_frame(bytes(data)))

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
                # Keep the disconnect sentinel for the next receive()
                self._inbound.put_nowait(None)
                break
            logger.debug(f"Dropped stale frame: {frame}")
            dropped += 1
        return dropped

    def max_payload_length(self) -> int:
        """Largest command the RX characteristic accepts this session.

        Commands are written with response so the node acknowledges each
        one. The limit still comes from the without-response size, which
        is what fits in a single ATT packet; a longer write-with-response
        would need a prepared (long) write.
        """
        if self._client is None:
            raise TransportError("Not connected")
        char = self._client.services.get_characteristic(NODE_RX_UUID)
        if char is not None:
            return char.max_write_without_response_size
        return self._client.mtu_size - ATT_HEADER_SIZE

    def _on_notify(self, sender, data: bytearray) -> None:  # type: ignore[no-untyped-def]
        frame = normalize_frame(bytes(data))
        logger.debug(f"Notification: {frame}")
        self._inbound.put_nowait(frame)

    def _on_device_disconnect(self, client: BleakClient) -> None:
        if self._client is not client:
            return
        logger.warning("Device disconnected")
        self._client = None
        # Wake any pending receive()
        self._inbound.put_nowait(None)
        if self._on_disconnect:
            try:
                self._on_disconnect()
            except Exception as e:
                logger.error(f"Disconnect callback error: {e}")
