"""Replica: the single owner of grid, clock, previews and strokes.

All state changes go through Replica.step(), one event at a time. step()
never performs I/O on the network; it returns the effects the host should
carry out (publish an update, send a preview, announce catch-up).
"""

import logging
from typing import Any

from .clock import LogicalClock
from .events import (
    AuthoritativeUpdate,
    Effect,
    Event,
    InSync,
    LocalCancel,
    LocalMove,
    LocalPress,
    LocalRelease,
    PreviewUpdate,
    PublishUpdate,
    SendPreview,
)
from .grid import Cell, Grid, merge_cell
from .marks import Brush, Mark, MarkKind
from .snapshot import Snapshot, SnapshotStore
from .stroke import StrokeBuffer
from .wire import Preview, Update

logger = logging.getLogger(__name__)


def _valid_timestamp(ts: Any) -> bool:
    return isinstance(ts, int) and not isinstance(ts, bool) and ts > 0


class Replica:
    """One peer's copy of the shared grid.

    Example:
        replica = Replica(30, 30, MarkKind.BOOL, Brush(Mark.of_bool(True)))
        effects = replica.step(LocalPress(3, 4))
    """

    def __init__(
        self,
        width: int,
        height: int,
        kind: MarkKind,
        brush: Brush,
        snapshots: SnapshotStore | None = None,
        name: str = "replica",
    ):
        """Create a replica, restoring committed state from snapshots if any.

        Args:
            width: Grid width in cells.
            height: Grid height in cells.
            kind: Mark kind used by this deployment.
            brush: Chooses the paint value of local strokes.
            snapshots: Optional durable store for committed state.
            name: Identifier used in logs and as log sender id.
        """
        if brush.mark.kind not in (kind, None):
            raise ValueError(f"Brush mark {brush.mark} does not match grid kind {kind.value}")
        self.name = name
        self.kind = kind
        self.brush = brush
        self.grid = Grid(width, height)
        self.clock = LogicalClock()
        self.last_serial = 0
        self._snapshots = snapshots
        self._previews: dict[int, Cell] = {}
        self._strokes: dict[str, StrokeBuffer] = {}
        self._synced_once = False
        self._snapshot_pending = False
        self._restore()

    def _restore(self) -> None:
        if self._snapshots is None:
            return
        snapshot = self._snapshots.load(self.grid.width, self.grid.height, self.kind)
        if snapshot is None:
            logger.info(f"[{self.name}] No snapshot, starting with an empty grid")
            return
        self.grid.load_cells(snapshot.cells)
        self.clock = LogicalClock(snapshot.clock)
        self.last_serial = snapshot.serial
        logger.info(
            f"[{self.name}] Restored snapshot: serial={snapshot.serial}, "
            f"clock={snapshot.clock}"
        )

    @property
    def resume_serial(self) -> int:
        """Serial to resume the log subscription from."""
        return self.last_serial

    # ---------- event routing ----------

    def step(self, event: Event) -> list[Effect]:
        """Apply one event and return the resulting effects."""
        if isinstance(event, AuthoritativeUpdate):
            return self._on_authoritative(event)
        if isinstance(event, PreviewUpdate):
            self._on_preview(event.preview)
            return []
        if isinstance(event, LocalPress):
            return self._on_press(event)
        if isinstance(event, LocalMove):
            return self._on_move(event)
        if isinstance(event, LocalRelease):
            return self._on_release(event.device)
        if isinstance(event, LocalCancel):
            self._stroke(event.device).cancel()
            return []
        raise TypeError(f"Unknown event: {event!r}")

    # ---------- local input ----------

    def _stroke(self, device: str) -> StrokeBuffer:
        stroke = self._strokes.get(device)
        if stroke is None:
            stroke = self._strokes[device] = StrokeBuffer(device)
        return stroke

    def _preview_effect(self, offset: int, value: Mark) -> SendPreview:
        return SendPreview(Preview(offset=offset, timestamp=self.clock.peek(), value=value))

    def _on_press(self, event: LocalPress) -> list[Effect]:
        if not self.grid.in_bounds(event.x, event.y):
            logger.debug(f"[{self.name}] Press outside grid at ({event.x}, {event.y})")
            return []
        stroke = self._stroke(event.device)
        if stroke.active:
            logger.warning(f"[{self.name}] Ignoring press, stroke already active on {event.device}")
            return []
        offset = self.grid.offset(event.x, event.y)
        value = self.brush.paint_value(self.grid[offset].value)
        stroke.begin(offset, value)
        return [self._preview_effect(offset, value)]

    def _on_move(self, event: LocalMove) -> list[Effect]:
        stroke = self._strokes.get(event.device)
        if stroke is None or not stroke.active:
            return []
        if not self.grid.in_bounds(event.x, event.y):
            return []
        offset = self.grid.offset(event.x, event.y)
        if not stroke.touch(offset):
            return []
        return [self._preview_effect(offset, stroke.value)]

    def _on_release(self, device: str) -> list[Effect]:
        stroke = self._strokes.get(device)
        if stroke is None or not stroke.active:
            return []
        value, targets = stroke.finish()
        if not targets:
            return []
        update = Update(targets=targets, value=value, timestamp=self.clock.advance_local())
        logger.debug(
            f"[{self.name}] Stroke committed: {len(targets)} cells, "
            f"value={value}, ts={update.timestamp}"
        )
        return [PublishUpdate(update)]

    # ---------- preview channel ----------

    def _on_preview(self, preview: Preview) -> None:
        if not self.grid.valid_offset(preview.offset) or not _valid_timestamp(preview.timestamp):
            logger.debug(f"[{self.name}] Dropping malformed preview {preview}")
            return
        if preview.timestamp <= self.grid[preview.offset].timestamp:
            return
        current = self._previews.get(preview.offset, Cell())
        self._previews[preview.offset] = merge_cell(current, preview.value, preview.timestamp)

    # ---------- authoritative log ----------

    def _on_authoritative(self, event: AuthoritativeUpdate) -> list[Effect]:
        if event.serial <= self.last_serial:
            logger.debug(f"[{self.name}] Skipping already applied serial {event.serial}")
            return []

        self.last_serial = event.serial
        if event.update is None:
            logger.warning(f"[{self.name}] Skipping undecodable log entry {event.serial}")
        else:
            self.apply_update(event.update)

        if event.serial < event.max_serial:
            return []
        return self._caught_up(event.serial)

    def apply_update(self, update: Update) -> int:
        """Merge an authoritative update into the grid.

        Returns:
            Number of cells that changed.
        """
        if not _valid_timestamp(update.timestamp):
            logger.warning(
                f"[{self.name}] Rejecting update with invalid timestamp {update.timestamp!r}"
            )
            return 0

        self.clock.observe(update.timestamp)
        changed = 0
        for offset in update.targets:
            if not self.grid.valid_offset(offset):
                logger.warning(f"[{self.name}] Dropping out-of-range offset {offset!r}")
                continue
            if self.grid.apply(offset, update.value, update.timestamp):
                changed += 1
            preview = self._previews.get(offset)
            if preview is not None and preview.timestamp <= self.grid[offset].timestamp:
                del self._previews[offset]
        return changed

    def _caught_up(self, serial: int) -> list[Effect]:
        effects: list[Effect] = []
        if self._synced_once:
            effects.append(InSync(serial))
        else:
            self._synced_once = True
        logger.info(f"[{self.name}] In sync at serial {serial}")
        self.save_snapshot()
        return effects

    def save_snapshot(self) -> bool:
        """Persist committed state. A failed save is retried at the next catch-up."""
        if self._snapshots is None:
            return False
        ok = self._snapshots.save(self.snapshot())
        if ok and self._snapshot_pending:
            logger.info(f"[{self.name}] Snapshot save recovered at serial {self.last_serial}")
        self._snapshot_pending = not ok
        return ok

    def snapshot(self) -> Snapshot:
        return Snapshot(
            width=self.grid.width,
            height=self.grid.height,
            kind=self.kind,
            cells=list(self.grid),
            clock=self.clock.value,
            serial=self.last_serial,
        )

    # ---------- rendering ----------

    def render_value(self, offset: int) -> Mark:
        """Value to draw at offset.

        A cell in a local stroke shows the stroke value; otherwise a remote
        preview newer than the committed cell; otherwise the committed value.
        """
        for stroke in self._strokes.values():
            if stroke.contains(offset):
                return stroke.value
        committed = self.grid[offset]
        preview = self._previews.get(offset)
        if preview is not None and preview.timestamp > committed.timestamp:
            return preview.value
        return committed.value

    def render(self) -> list[Mark]:
        return [self.render_value(offset) for offset in range(self.grid.size)]

    def active_devices(self) -> list[str]:
        return [device for device, stroke in self._strokes.items() if stroke.active]

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "width": self.grid.width,
            "height": self.grid.height,
            "mark_kind": self.kind.value,
            "clock": self.clock.value,
            "last_serial": self.last_serial,
            "painted_cells": self.grid.painted_count(),
            "pending_previews": len(self._previews),
            "active_strokes": len(self.active_devices()),
            "snapshot_pending": self._snapshot_pending,
        }
