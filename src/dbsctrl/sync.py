"""
Local/remote consistency tracking.

SyncTracker decides whether the device needs the local settings pushed.
Local edits mark it dirty; values arriving from the device do not, and for
a settling window after connect or ingest nothing does.
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional

from .core import SETTLE_DELAY
from .protocol import PayloadTooLarge

logger = logging.getLogger(__name__)


class SyncState(Enum):
    CLEAN = "clean"
    DIRTY = "dirty"


class SyncTracker:
    """Clean/Dirty state machine with a time-based suppression window."""

    def __init__(
        self,
        settle_delay: float = SETTLE_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize tracker in the Clean state.

        Args:
            settle_delay: Seconds edits are ignored after suppress()
            clock: Monotonic time source
        """
        self.settle_delay = settle_delay
        self._clock = clock
        self._state = SyncState.CLEAN
        self._settle_until: Optional[float] = None
        self._edit_count = 0

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def dirty(self) -> bool:
        return self._state is SyncState.DIRTY

    @property
    def suppressed(self) -> bool:
        """True while inside a settling window."""
        if self._settle_until is None:
            return False
        if self._clock() >= self._settle_until:
            self._settle_until = None
            return False
        return True

    def suppress(self) -> None:
        """Open (or extend) the settling window from now."""
        self._settle_until = self._clock() + self.settle_delay

    def mark_edited(self) -> bool:
        """Record a local field edit.

        Returns:
            True if the edit marked the state dirty
        """
        if self.suppressed:
            logger.debug("Edit during settling window ignored")
            return False
        self._state = SyncState.DIRTY
        self._edit_count += 1
        return True

    def begin_ingest(self) -> None:
        """Called right before applying values received from the device."""
        self.suppress()

    def ingest_complete(self) -> None:
        """Device values are applied; local now matches remote."""
        self._state = SyncState.CLEAN

    def begin_push(self) -> int:
        """Snapshot the edit counter before a push is transmitted."""
        return self._edit_count

    def push_succeeded(self, token: int) -> None:
        """Mark Clean unless edits happened while the push was in flight."""
        if token == self._edit_count:
            self._state = SyncState.CLEAN

    def check_payload(self, command: str, limit: int) -> str:
        """Push gate: reject commands the transport cannot carry.

        Raises:
            PayloadTooLarge: If the command is longer than ``limit``
        """
        if len(command) > limit:
            raise PayloadTooLarge(command, limit)
        return command

    def reset(self) -> None:
        """Back to Clean with no settling window (session ended)."""
        self._state = SyncState.CLEAN
        self._settle_until = None
