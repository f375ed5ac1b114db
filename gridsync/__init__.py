"""Replicated pixel grid.

Each cell is a last-writer-wins register ordered by a logical clock.
Strokes are committed as one update through an authoritative log, while
previews travel on a best-effort channel for live feedback.
"""

from .clock import LogicalClock
from .events import (
    AuthoritativeUpdate,
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
from .marks import EMPTY, Brush, BrushMode, Mark, MarkKind, tie_break
from .replica import Replica
from .snapshot import Snapshot, SnapshotStore
from .wire import Preview, Update, WireError

__all__ = [
    "AuthoritativeUpdate",
    "Brush",
    "BrushMode",
    "Cell",
    "EMPTY",
    "Grid",
    "InSync",
    "LocalCancel",
    "LocalMove",
    "LocalPress",
    "LocalRelease",
    "LogicalClock",
    "Mark",
    "MarkKind",
    "Preview",
    "PreviewUpdate",
    "PublishUpdate",
    "Replica",
    "SendPreview",
    "Snapshot",
    "SnapshotStore",
    "Update",
    "WireError",
    "merge_cell",
    "tie_break",
]
