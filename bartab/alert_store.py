"""SQLite-backed alert log read by the trusted-friend view."""

from __future__ import annotations

import sqlite3
from typing import Optional

from bartab import realtime
from bartab.alerts import compose_message
from bartab.calculations import DANGER_BAC, format_bac
from bartab.models import ALERT_HIGH_RISK, ALERT_SESSION_ENDED, Alert, Customer, TabSession
from bartab.time_utils import to_iso, utcnow


def init_db(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                contact TEXT NOT NULL,
                kind TEXT NOT NULL,
                customer_name TEXT NOT NULL,
                body TEXT NOT NULL,
                session_id INTEGER,
                created_at TEXT NOT NULL
            )
            """
        )
        # One alert of each kind per session; manual alerts have no session.
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_alerts_session_kind ON alerts(session_id, kind)"
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_contact ON alerts(contact)")
        conn.commit()


def create_alert(
    db_path: str,
    *,
    contact: str,
    kind: str,
    customer_name: str,
    bac: Optional[str] = None,
    session_id: Optional[int] = None,
) -> Alert | None:
    """Store an alert. Returns None if this session already has one of this kind."""
    body = compose_message(kind, customer_name, bac)
    try:
        with sqlite3.connect(db_path) as conn:
            conn.row_factory = sqlite3.Row
            cur = conn.execute(
                """
                INSERT INTO alerts (contact, kind, customer_name, body, session_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (contact.strip(), kind, customer_name.strip(), body, session_id, to_iso(utcnow())),
            )
            alert_id = int(cur.lastrowid)
            realtime.record_change(conn, "alerts", realtime.EVENT_INSERT, alert_id, session_id)
            conn.commit()
            row = conn.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,)).fetchone()
    except sqlite3.IntegrityError:
        return None
    return Alert.from_row(row)


def list_alerts_for_contact(db_path: str, contact: str, limit: int = 50) -> list[Alert]:
    """The most recent ``limit`` alerts for a contact, oldest first."""
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            """
            SELECT * FROM alerts
            WHERE contact = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (contact.strip(), max(1, min(limit, 200))),
        ).fetchall()
    return [Alert.from_row(row) for row in reversed(rows)]


def maybe_create_high_risk_alert(
    db_path: str,
    *,
    session: TabSession,
    customer: Customer,
    bac: float,
) -> Alert | None:
    """Alert the trusted contact the first time a session reaches the danger tier."""
    if bac < DANGER_BAC or not customer.emergency_phone:
        return None
    return create_alert(
        db_path,
        contact=customer.emergency_phone,
        kind=ALERT_HIGH_RISK,
        customer_name=customer.name,
        bac=format_bac(bac),
        session_id=session.id,
    )


def create_session_ended_alert(db_path: str, *, session: TabSession, customer: Customer) -> Alert | None:
    if not customer.emergency_phone:
        return None
    return create_alert(
        db_path,
        contact=customer.emergency_phone,
        kind=ALERT_SESSION_ENDED,
        customer_name=customer.name,
        session_id=session.id,
    )
