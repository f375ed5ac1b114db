"""Durable snapshots of committed replica state.

A snapshot holds the committed grid, the logical clock and the serial of
the last applied log entry. It is written only when the replica has caught
up with the log, so it never contains preview state.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .grid import Cell
from .marks import MarkKind

logger = logging.getLogger(__name__)

SNAPSHOT_SCHEMA = """
-- Single-row table: each save overwrites the previous snapshot
CREATE TABLE IF NOT EXISTS grid_snapshot (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    width INTEGER NOT NULL,
    height INTEGER NOT NULL,
    mark_kind TEXT NOT NULL,
    cells TEXT NOT NULL,
    clock INTEGER NOT NULL,
    serial INTEGER NOT NULL,
    saved_at TEXT NOT NULL
);
"""


@dataclass
class Snapshot:
    """Committed state of one replica."""

    width: int
    height: int
    kind: MarkKind
    cells: list[Cell]
    clock: int = 0
    serial: int = 0
    saved_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "mark_kind": self.kind.value,
            "cells": [[self.kind.to_wire(c.value), c.timestamp] for c in self.cells],
            "clock": self.clock,
            "serial": self.serial,
            "saved_at": self.saved_at.isoformat(),
        }


class SnapshotStore:
    """sqlite-backed snapshot storage."""

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open the database and create the schema."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SNAPSHOT_SCHEMA)
        self._conn.commit()
        logger.info(f"SnapshotStore connected to {self.db_path}")

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def save(self, snapshot: Snapshot) -> bool:
        """Atomically replace the stored snapshot.

        Returns:
            True on success. Failures are logged, never raised.
        """
        try:
            conn = self._ensure_connected()
            data = snapshot.to_dict()
            with conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO grid_snapshot (
                        id, width, height, mark_kind, cells, clock, serial, saved_at
                    ) VALUES (1, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        data["width"],
                        data["height"],
                        data["mark_kind"],
                        json.dumps(data["cells"], separators=(",", ":")),
                        data["clock"],
                        data["serial"],
                        data["saved_at"],
                    ),
                )
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Snapshot save failed at serial {snapshot.serial}: {e}")
            return False

        logger.debug(f"Snapshot saved at serial {snapshot.serial}, clock={snapshot.clock}")
        return True

    def load(self, width: int, height: int, kind: MarkKind) -> Snapshot | None:
        """Load the stored snapshot if it matches the grid shape.

        Returns:
            The snapshot, or None when nothing usable is stored.
        """
        try:
            conn = self._ensure_connected()
            row = conn.execute("SELECT * FROM grid_snapshot WHERE id = 1").fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Snapshot load failed, starting empty: {e}")
            return None

        if row is None:
            return None

        if (row["width"], row["height"], row["mark_kind"]) != (width, height, kind.value):
            logger.warning(
                f"Ignoring snapshot for {row['width']}x{row['height']} "
                f"{row['mark_kind']} grid, expected {width}x{height} {kind.value}"
            )
            return None

        try:
            cells = [
                Cell(kind.from_wire(value), int(ts))
                for value, ts in json.loads(row["cells"])
            ]
            if len(cells) != width * height:
                raise ValueError(f"expected {width * height} cells, got {len(cells)}")
            clock, serial = int(row["clock"]), int(row["serial"])
            if clock < 0 or serial < 0:
                raise ValueError(f"negative clock {clock} or serial {serial}")
            newest = max(cell.timestamp for cell in cells)
            if min(cell.timestamp for cell in cells) < 0:
                raise ValueError("negative cell timestamp")
            # The clock has observed every committed timestamp
            if clock < newest:
                raise ValueError(f"clock {clock} behind cell timestamp {newest}")
            return Snapshot(
                width=width,
                height=height,
                kind=kind,
                cells=cells,
                clock=clock,
                serial=serial,
                saved_at=datetime.fromisoformat(row["saved_at"]),
            )
        except (TypeError, ValueError) as e:
            logger.warning(f"Corrupt snapshot, starting empty: {e}")
            return None

    def get_stats(self) -> dict[str, Any]:
        """Summary of the stored snapshot."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT width, height, mark_kind, clock, serial, saved_at "
            "FROM grid_snapshot WHERE id = 1"
        ).fetchone()
        if row is None:
            return {"present": False}
        return {"present": True, **dict(row)}
