"""Idempotency index: image id -> completion marker.

The index is the only state shared between pipeline runs. ``claim`` is an
atomic test-and-set so at most one run per image id is in flight.
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

IN_FLIGHT = "in_flight"
COMPLETE = "complete"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class IdempotencyStore(ABC):
    @abstractmethod
    def is_complete(self, image_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def claim(self, image_id: str) -> bool:
        """Mark the image in flight. False if it is complete or already claimed."""
        raise NotImplementedError

    @abstractmethod
    def mark_complete(self, image_id: str, status: str = "") -> None:
        raise NotImplementedError

    @abstractmethod
    def release(self, image_id: str) -> None:
        """Drop an in-flight claim so a later run can retry the image."""
        raise NotImplementedError


class MemoryIdempotencyStore(IdempotencyStore):
    def __init__(self, completed: set[str] | None = None) -> None:
        self._lock = threading.Lock()
        self._state: dict[str, str] = {image_id: COMPLETE for image_id in (completed or ())}

    def is_complete(self, image_id: str) -> bool:
        with self._lock:
            return self._state.get(image_id) == COMPLETE

    def claim(self, image_id: str) -> bool:
        with self._lock:
            if image_id in self._state:
                return False
            self._state[image_id] = IN_FLIGHT
            return True

    def mark_complete(self, image_id: str, status: str = "") -> None:
        with self._lock:
            self._state[image_id] = COMPLETE

    def release(self, image_id: str) -> None:
        with self._lock:
            if self._state.get(image_id) == IN_FLIGHT:
                del self._state[image_id]


class SqliteIdempotencyStore(IdempotencyStore):
    """On-disk index backed by a single SQLite table.

    In-flight claims left behind by a crashed run are cleared on open, which
    makes those images resumable.
    """

    def __init__(self, path: Path, reset_in_flight: bool = True) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS image_runs (
                image_id TEXT PRIMARY KEY,
                state TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT '',
                updated_at TEXT NOT NULL
            );
            """
        )
        if reset_in_flight:
            with self._lock:
                self._conn.execute("DELETE FROM image_runs WHERE state = ?", (IN_FLIGHT,))

    def is_complete(self, image_id: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT state FROM image_runs WHERE image_id = ?", (image_id,)
            ).fetchone()
        return row is not None and row[0] == COMPLETE

    def claim(self, image_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO image_runs (image_id, state, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(image_id) DO NOTHING",
                (image_id, IN_FLIGHT, utc_now_iso()),
            )
            return cur.rowcount == 1

    def mark_complete(self, image_id: str, status: str = "") -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO image_runs (image_id, state, status, updated_at) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(image_id) DO UPDATE SET state = excluded.state, "
                "status = excluded.status, updated_at = excluded.updated_at",
                (image_id, COMPLETE, status, utc_now_iso()),
            )

    def release(self, image_id: str) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM image_runs WHERE image_id = ? AND state = ?",
                (image_id, IN_FLIGHT),
            )

    def completed_ids(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT image_id FROM image_runs WHERE state = ? ORDER BY image_id", (COMPLETE,)
            ).fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
