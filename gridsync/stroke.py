"""Buffering of one input gesture into a single batched edit."""

import logging
from enum import Enum

from .marks import Mark

logger = logging.getLogger(__name__)


class StrokeState(Enum):
    IDLE = "idle"
    ACTIVE = "active"


class StrokeBuffer:
    """Collects the offsets touched by one gesture on one input device.

    Every touched cell gets the paint value chosen when the gesture started.
    The buffer itself never talks to the network or the clock; the replica
    turns its output into previews and one authoritative update.
    """

    def __init__(self, device: str = "default"):
        self.device = device
        self._state = StrokeState.IDLE
        self._value: Mark | None = None
        self._touched: set[int] = set()

    @property
    def state(self) -> StrokeState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is StrokeState.ACTIVE

    @property
    def value(self) -> Mark | None:
        return self._value

    def begin(self, offset: int, value: Mark) -> None:
        """Start a stroke at offset with the given paint value."""
        if self.active:
            raise RuntimeError(f"Stroke already active on device {self.device}")
        self._state = StrokeState.ACTIVE
        self._value = value
        self._touched = {offset}
        logger.debug(f"Stroke started on {self.device} at {offset} with {value}")

    def touch(self, offset: int) -> bool:
        """Record a cell crossed by the gesture.

        Returns:
            True if the offset was not touched before in this stroke.
        """
        if not self.active or offset in self._touched:
            return False
        self._touched.add(offset)
        return True

    def contains(self, offset: int) -> bool:
        return self.active and offset in self._touched

    def finish(self) -> tuple[Mark | None, tuple[int, ...]]:
        """End the stroke and hand back its value and sorted targets."""
        value, targets = self._value, tuple(sorted(self._touched))
        self._reset()
        return value, targets

    def cancel(self) -> int:
        """Drop the stroke without committing it.

        Returns:
            Number of offsets discarded.
        """
        discarded = len(self._touched)
        self._reset()
        if discarded:
            logger.debug(f"Stroke on {self.device} cancelled, {discarded} cells discarded")
        return discarded

    def _reset(self) -> None:
        self._state = StrokeState.IDLE
        self._value = None
        self._touched = set()

    def __len__(self) -> int:
        return len(self._touched)
