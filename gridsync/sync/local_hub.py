"""In-process hub connecting several replicas for simulation and tests.

All replicas share one UpdateLog and one preview fan-out. Nothing is
delivered until pump() is called, so callers control interleaving.
"""

import logging
import random
from collections import deque
from typing import Any

from ..events import Effect, InSync, PreviewUpdate, PublishUpdate, SendPreview
from ..replica import Replica
from .update_log import UpdateLog

logger = logging.getLogger(__name__)


class LocalHub:
    """Routes replica effects through a shared log and preview channel."""

    def __init__(
        self,
        log: UpdateLog,
        preview_loss: float = 0.0,
        preview_duplication: float = 0.0,
        seed: int | None = None,
    ):
        """Initialize the hub.

        Args:
            log: Authoritative log shared by all replicas.
            preview_loss: Probability that a preview is dropped per receiver.
            preview_duplication: Probability that a preview is delivered twice.
            seed: Random seed for reproducible runs.
        """
        self.log = log
        self.preview_loss = preview_loss
        self.preview_duplication = preview_duplication
        self._rng = random.Random(seed)
        self.replicas: dict[str, Replica] = {}
        self._previews: dict[str, deque[PreviewUpdate]] = {}
        self.in_sync_events: list[tuple[str, int]] = []
        self.published = 0

    def attach(self, replica: Replica) -> None:
        if replica.name in self.replicas:
            raise ValueError(f"Replica {replica.name} already attached")
        self.replicas[replica.name] = replica
        self._previews[replica.name] = deque()

    def send(self, name: str, event: Any) -> list[Effect]:
        """Feed one event to a replica and route its effects."""
        effects = self.replicas[name].step(event)
        for effect in effects:
            self.handle_effect(name, effect)
        return effects

    def handle_effect(self, name: str, effect: Effect) -> None:
        if isinstance(effect, PublishUpdate):
            self.log.append(effect.update, sender=name)
            self.published += 1
        elif isinstance(effect, SendPreview):
            for other, queue in self._previews.items():
                if other == name or self._rng.random() < self.preview_loss:
                    continue
                queue.append(PreviewUpdate(effect.preview))
                if self._rng.random() < self.preview_duplication:
                    queue.append(PreviewUpdate(effect.preview))
        elif isinstance(effect, InSync):
            self.in_sync_events.append((name, effect.serial))

    def pump_previews(self, shuffle: bool = False) -> int:
        """Deliver queued previews, optionally out of order."""
        delivered = 0
        for name, queue in self._previews.items():
            pending = list(queue)
            queue.clear()
            if shuffle:
                self._rng.shuffle(pending)
            for event in pending:
                self.send(name, event)
            delivered += len(pending)
        return delivered

    def pump(self, names: list[str] | None = None) -> int:
        """Deliver pending log entries to the named replicas (default: all)."""
        delivered = 0
        for name in names or list(self.replicas):
            replica = self.replicas[name]
            while batch := list(self.log.deliveries_since(replica.resume_serial)):
                for delivery in batch:
                    self.send(name, delivery.to_event())
                delivered += len(batch)
        return delivered

    def converged(self) -> bool:
        """True if every replica holds identical committed cells."""
        states = [list(replica.grid) for replica in self.replicas.values()]
        return all(state == states[0] for state in states[1:])
