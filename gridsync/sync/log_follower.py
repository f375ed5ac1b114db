"""Follows the shared update log and feeds deliveries to a replica.

Polls the log for entries after the replica's last applied serial and
passes every resulting effect to a handler supplied by the host.
"""

import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable

from ..events import Effect
from ..replica import Replica
from .update_log import UpdateLog

logger = logging.getLogger(__name__)

EffectHandler = Callable[[Effect], None]


class LogFollower:
    """Delivers new log entries to one replica in serial order."""

    def __init__(
        self,
        log: UpdateLog,
        replica: Replica,
        on_effect: EffectHandler,
        batch_size: int = 100,
    ):
        """Initialize the follower.

        Args:
            log: Shared update log.
            replica: Replica receiving deliveries.
            on_effect: Called with each effect produced by the replica.
            batch_size: Maximum entries fetched per poll.
        """
        self.log = log
        self.replica = replica
        self.on_effect = on_effect
        self.batch_size = batch_size
        self._last_poll: datetime | None = None
        self._delivered = 0

    def poll(self) -> int:
        """Deliver every pending entry.

        Returns:
            Number of entries delivered.
        """
        delivered = 0
        while True:
            batch = list(
                self.log.deliveries_since(self.replica.resume_serial, limit=self.batch_size)
            )
            if not batch:
                break
            for delivery in batch:
                for effect in self.replica.step(delivery.to_event()):
                    self.on_effect(effect)
            delivered += len(batch)
            if len(batch) < self.batch_size:
                break

        self._last_poll = datetime.now()
        self._delivered += delivered
        if delivered:
            logger.debug(f"Delivered {delivered} entries, now at serial {self.replica.last_serial}")
        return delivered

    async def follow_loop(
        self,
        interval_seconds: float = 0.5,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Poll the log until stop_event is set.

        Args:
            interval_seconds: Seconds between polls.
            stop_event: Event to signal loop should stop.
        """
        logger.info(
            f"Following update log from serial {self.replica.resume_serial} "
            f"every {interval_seconds}s"
        )

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                self.poll()
            except sqlite3.Error as e:
                logger.error(f"Log poll failed: {e}")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop
            else:
                await asyncio.sleep(interval_seconds)

        logger.info("Log follower stopped")

    def get_follow_status(self) -> dict[str, Any]:
        return {
            "last_poll": self._last_poll.isoformat() if self._last_poll else None,
            "delivered": self._delivered,
            "last_serial": self.replica.last_serial,
            "log_max_serial": self.log.max_serial(),
        }
