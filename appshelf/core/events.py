"""Append-only event journal backed by SQLite.

Events are the operator-facing history behind a record's conditions:
skipped images, failed deletions, released finalizers. Each event is also
written to the log.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from appshelf.models.meta import Record, utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_EVENTS = """
CREATE TABLE IF NOT EXISTS events (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    kind          TEXT NOT NULL,
    namespace     TEXT NOT NULL,
    name          TEXT NOT NULL,
    event_type    TEXT NOT NULL,
    reason        TEXT NOT NULL,
    message       TEXT NOT NULL DEFAULT '',
    timestamp_utc TEXT NOT NULL
);
"""

_CREATE_IDX_OBJECT = """
CREATE INDEX IF NOT EXISTS idx_event_object ON events(kind, namespace, name, id);
"""


class EventType(str, Enum):
    NORMAL = "Normal"
    WARNING = "Warning"


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    namespace: str
    name: str
    type: EventType
    reason: str
    message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class EventRecorder:
    """Records events against records.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute(_CREATE_EVENTS)
            conn.execute(_CREATE_IDX_OBJECT)
            conn.commit()
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def record(
        self, obj: Record, event_type: EventType, reason: str, message: str = ""
    ) -> Event:
        event = Event(
            kind=obj.kind,
            namespace=obj.metadata.namespace,
            name=obj.metadata.name,
            type=event_type,
            reason=reason,
            message=message,
        )
        level = logging.WARNING if event_type is EventType.WARNING else logging.INFO
        logger.log(level, "%s %s/%s %s: %s", event.kind, event.namespace, event.name, reason, message)

        with self._write_lock:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO events
                        (kind, namespace, name, event_type, reason, message, timestamp_utc)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.kind,
                        event.namespace,
                        event.name,
                        event.type.value,
                        event.reason,
                        event.message,
                        event.timestamp.isoformat(),
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        return event

    def normal(self, obj: Record, reason: str, message: str = "") -> Event:
        return self.record(obj, EventType.NORMAL, reason, message)

    def warning(self, obj: Record, reason: str, message: str = "") -> Event:
        return self.record(obj, EventType.WARNING, reason, message)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def events_for(self, kind: str, namespace: str, name: str) -> list[Event]:
        """All events of one record, oldest first."""
        return self._query(
            "SELECT kind, namespace, name, event_type, reason, message, timestamp_utc "
            "FROM events WHERE kind = ? AND namespace = ? AND name = ? ORDER BY id",
            (kind, namespace, name),
        )

    def recent(self, limit: int = 50) -> list[Event]:
        """The newest ``limit`` events, oldest first."""
        events = self._query(
            "SELECT kind, namespace, name, event_type, reason, message, timestamp_utc "
            "FROM events ORDER BY id DESC LIMIT ?",
            (limit,),
        )
        events.reverse()
        return events

    def _query(self, sql: str, params: tuple) -> list[Event]:
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [
            Event(
                kind=row[0],
                namespace=row[1],
                name=row[2],
                type=EventType(row[3]),
                reason=row[4],
                message=row[5],
                timestamp=datetime.fromisoformat(row[6]),
            )
            for row in rows
        ]
