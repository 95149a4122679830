"""Change feed over the session store.

Writers append a row to ``changes`` in the same transaction as the data
change. Readers poll ``list_changes(since=...)``. Delivery is at-least-once
and clients must not rely on ordering across tables: ``SessionFeed``
re-fetches the session on every relevant change instead of patching state
from the change payload.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Callable, Iterable, Optional

from bartab.time_utils import to_iso, utcnow

EVENT_INSERT = "INSERT"
EVENT_UPDATE = "UPDATE"
MAX_CHANGES = 500


def init_db(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS changes (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                table_name TEXT NOT NULL,
                event TEXT NOT NULL,
                row_id INTEGER NOT NULL,
                session_id INTEGER,
                created_at TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_changes_session_id ON changes(session_id)")
        conn.commit()


def record_change(
    conn: sqlite3.Connection,
    table_name: str,
    event: str,
    row_id: int,
    session_id: Optional[int] = None,
) -> int:
    cur = conn.execute(
        "INSERT INTO changes (table_name, event, row_id, session_id, created_at) VALUES (?, ?, ?, ?, ?)",
        (table_name, event, row_id, session_id, to_iso(utcnow())),
    )
    return int(cur.lastrowid)


def list_changes(
    db_path: str,
    *,
    since: int = 0,
    session_id: Optional[int] = None,
    limit: int = 200,
) -> list[dict[str, Any]]:
    limit = max(1, min(limit, MAX_CHANGES))
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        if session_id is None:
            rows = conn.execute(
                "SELECT * FROM changes WHERE seq > ? ORDER BY seq LIMIT ?",
                (since, limit),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM changes WHERE seq > ? AND session_id = ? ORDER BY seq LIMIT ?",
                (since, session_id, limit),
            ).fetchall()
    return [
        {
            "seq": row["seq"],
            "table": row["table_name"],
            "event": row["event"],
            "row_id": row["row_id"],
            "session_id": row["session_id"],
            "created_at": row["created_at"],
        }
        for row in rows
    ]


def latest_seq(db_path: str) -> int:
    with sqlite3.connect(db_path) as conn:
        row = conn.execute("SELECT COALESCE(MAX(seq), 0) FROM changes").fetchone()
    return int(row[0])


def merge_drinks(current: Iterable, incoming: Iterable) -> list:
    """Union by drink id (newest copy wins), ordered by ``ordered_at`` then id."""
    by_id = {d.id: d for d in current}
    for d in incoming:
        by_id[d.id] = d
    return sorted(by_id.values(), key=lambda d: (d.ordered_at, d.id))


class SessionFeed:
    """Keeps one session's state current from an unordered, possibly duplicated feed."""

    def __init__(self, session_id: int, fetch_session: Callable[[int], Any], since: int = 0):
        self.session_id = session_id
        self._fetch = fetch_session
        self.cursor = since
        self.session = None
        self.refreshes = 0

    def refresh(self):
        fetched = self._fetch(self.session_id)
        if fetched is not None and self.session is not None:
            fetched.drinks = merge_drinks(self.session.drinks, fetched.drinks)
        if fetched is not None:
            self.session = fetched
        self.refreshes += 1
        return self.session

    def apply(self, changes: Iterable[dict]) -> bool:
        """Apply a batch of changes; returns True if the session was re-fetched."""
        relevant = False
        for change in changes:
            seq = int(change["seq"])
            if seq <= self.cursor:
                continue
            self.cursor = seq
            if change.get("session_id") == self.session_id:
                relevant = True
        if relevant or self.session is None:
            self.refresh()
        return relevant
