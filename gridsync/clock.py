"""Lamport-style logical clock for grid edits."""

import logging

logger = logging.getLogger(__name__)


class LogicalClock:
    """Monotonic scalar clock owned by one replica.

    The value only moves forward: local edits advance it by one, and every
    authoritative update pulls it up to the highest timestamp seen.
    """

    def __init__(self, value: int = 0):
        if value < 0:
            raise ValueError(f"Clock value must be non-negative, got {value}")
        self._value = value

    @property
    def value(self) -> int:
        return self._value

    def advance_local(self) -> int:
        """Increment and return the clock. Call once per committed stroke."""
        self._value += 1
        return self._value

    def observe(self, remote_ts: int) -> int:
        """Raise the clock to a remote timestamp if it is ahead."""
        if remote_ts > self._value:
            logger.debug(f"Clock advanced {self._value} -> {remote_ts}")
            self._value = remote_ts
        return self._value

    def peek(self) -> int:
        """Return the timestamp the next local edit would get.

        Used as the provisional timestamp of previews. It never exceeds the
        value a later advance_local() returns.
        """
        return self._value + 1

    def __repr__(self) -> str:
        return f"LogicalClock({self._value})"
