"""Authoritative update log backed by SQLite.

The log assigns every appended update a strictly increasing serial and
hands entries back in serial order. Several replica processes on one host
can share the same database file; each follows it from its own resume
serial.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from ..events import AuthoritativeUpdate
from ..marks import MarkKind
from ..wire import Update, WireError, decode_update, encode_update

logger = logging.getLogger(__name__)

# Schema for the update log
UPDATE_LOG_SCHEMA = """
-- Append-only: serial is assigned by SQLite and never reused
CREATE TABLE IF NOT EXISTS update_log (
    serial INTEGER PRIMARY KEY AUTOINCREMENT,
    sender TEXT NOT NULL,
    payload BLOB NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_update_sender ON update_log(sender);
"""


@dataclass
class LogRecord:
    """A single stored log entry."""

    serial: int
    sender: str
    update: Update
    created_at: datetime


@dataclass
class Delivery:
    """A log entry as delivered to a subscriber.

    update is None when the stored payload could not be decoded.
    """

    update: Update | None
    serial: int
    max_serial: int

    def to_event(self) -> AuthoritativeUpdate:
        return AuthoritativeUpdate(
            update=self.update,
            serial=self.serial,
            max_serial=self.max_serial,
        )


class UpdateLog:
    """Serial-assigning, append-only log of grid updates."""

    def __init__(self, db_path: str | Path, kind: MarkKind):
        """Initialize the log.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            kind: Mark kind used to encode and decode payloads.
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self.kind = kind
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(UPDATE_LOG_SCHEMA)
        self._conn.commit()

        logger.info(f"UpdateLog connected to {self.db_path}, max_serial={self.max_serial()}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def append(self, update: Update, sender: str) -> int:
        """Append an update and return its serial."""
        conn = self._ensure_connected()
        payload = encode_update(update, self.kind)

        cursor = conn.execute(
            "INSERT INTO update_log (sender, payload, created_at) VALUES (?, ?, ?)",
            (sender, payload, datetime.now().isoformat()),
        )
        conn.commit()

        serial = cursor.lastrowid
        logger.debug(f"Appended update from {sender} as serial {serial}")
        return serial

    def max_serial(self) -> int:
        """Highest serial in the log, or 0 if empty."""
        conn = self._ensure_connected()
        row = conn.execute("SELECT MAX(serial) FROM update_log").fetchone()
        return row[0] if row[0] is not None else 0

    def _scan(self, serial: int, limit: int) -> Iterator[tuple[sqlite3.Row, Update | None]]:
        """Yield rows after serial with their decoded update, or None if undecodable."""
        conn = self._ensure_connected()

        cursor = conn.execute(
            """
            SELECT serial, sender, payload, created_at
            FROM update_log
            WHERE serial > ?
            ORDER BY serial ASC
            LIMIT ?
            """,
            (serial, limit),
        )

        for row in cursor.fetchall():
            try:
                update = decode_update(bytes(row["payload"]), self.kind)
            except WireError as e:
                logger.warning(f"Undecodable log entry {row['serial']}: {e}")
                update = None
            yield row, update

    def get_records_since(self, serial: int, limit: int = 1000) -> list[LogRecord]:
        """Get decodable entries with serial greater than specified.

        Entries whose payload cannot be decoded are left out, so fewer than
        limit records may come back even when more entries follow.
        """
        return [
            LogRecord(
                serial=row["serial"],
                sender=row["sender"],
                update=update,
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row, update in self._scan(serial, limit)
            if update is not None
        ]

    def deliveries_since(self, resume_serial: int, limit: int = 1000) -> Iterator[Delivery]:
        """Yield entries after resume_serial, each tagged with the current max serial.

        Undecodable entries are yielded with update=None so subscribers
        still consume their serial.
        """
        max_serial = self.max_serial()
        for row, update in self._scan(resume_serial, limit):
            yield Delivery(update=update, serial=row["serial"], max_serial=max_serial)

    def get_stats(self) -> dict[str, Any]:
        """Get log statistics."""
        conn = self._ensure_connected()

        stats: dict[str, Any] = {"max_serial": self.max_serial()}

        cursor = conn.execute("SELECT COUNT(*) FROM update_log")
        stats["total_entries"] = cursor.fetchone()[0]

        cursor = conn.execute(
            "SELECT sender, COUNT(*) FROM update_log GROUP BY sender"
        )
        stats["entries_by_sender"] = {row[0]: row[1] for row in cursor}

        if isinstance(self.db_path, Path) and self.db_path.exists():
            stats["db_size_mb"] = round(
                self.db_path.stat().st_size / (1024 * 1024), 2
            )

        return stats
