"""
Operator-visible scrollback of device events.
"""

import logging
from collections import deque
from typing import Deque, List, Optional

logger = logging.getLogger(__name__)


class EventLog:
    """Append-only, ordered list of human-readable messages."""

    def __init__(self, max_messages: Optional[int] = 500) -> None:
        self._messages: Deque[str] = deque(maxlen=max_messages)

    def append(self, message: str) -> None:
        self._messages.append(message)
        logger.debug(f"event: {message}")

    @property
    def messages(self) -> List[str]:
        return list(self._messages)

    def text(self) -> str:
        """All messages joined by newlines, for copying out."""
        return "\n".join(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
