"""SQLite-backed customers, tab sessions and drinks.

Session lifecycle: pending (no customer) -> active (customer joined) -> ended.
Every write also appends to the change feed in the same transaction.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Optional

from bartab import realtime
from bartab.models import STATUS_ACTIVE, STATUS_ENDED, STATUS_PENDING, Customer, Drink, TabSession
from bartab.time_utils import to_iso, utcnow
from bartab.tokens import new_unique_token

TOKEN_INSERT_ATTEMPTS = 5


def init_db(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL UNIQUE,
                name TEXT NOT NULL,
                weight_lb REAL NOT NULL,
                sex TEXT NOT NULL,
                emergency_phone TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY(user_id) REFERENCES users(id)
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                customer_id INTEGER,
                join_token TEXT NOT NULL,
                started_at TEXT NOT NULL,
                ended_at TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                chat_turn INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY(customer_id) REFERENCES customers(id)
            )
            """
        )
        # Tokens only need to be unique among sessions that can still be joined.
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_live_token ON sessions(join_token) WHERE is_active = 1"
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_customer_id ON sessions(customer_id)")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS drinks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                volume_ml REAL NOT NULL,
                abv REAL NOT NULL,
                ordered_at TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY(session_id) REFERENCES sessions(id)
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_drinks_session_id ON drinks(session_id)")
        conn.commit()


# ---- customers ----


def upsert_customer(
    db_path: str,
    *,
    user_id: int,
    name: str,
    weight_lb: float,
    sex: str,
    emergency_phone: Optional[str] = None,
) -> Customer:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        existing = conn.execute("SELECT id FROM customers WHERE user_id = ?", (user_id,)).fetchone()
        if existing is None:
            cur = conn.execute(
                """
                INSERT INTO customers (user_id, name, weight_lb, sex, emergency_phone)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, name.strip(), float(weight_lb), sex, emergency_phone),
            )
            customer_id = int(cur.lastrowid)
            realtime.record_change(conn, "customers", realtime.EVENT_INSERT, customer_id)
        else:
            customer_id = int(existing["id"])
            conn.execute(
                "UPDATE customers SET name = ?, weight_lb = ?, sex = ?, emergency_phone = ? WHERE id = ?",
                (name.strip(), float(weight_lb), sex, emergency_phone, customer_id),
            )
            realtime.record_change(conn, "customers", realtime.EVENT_UPDATE, customer_id)
        conn.commit()
        row = conn.execute("SELECT * FROM customers WHERE id = ?", (customer_id,)).fetchone()
    return Customer.from_row(row)


def get_customer(db_path: str, customer_id: int) -> Customer | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute("SELECT * FROM customers WHERE id = ?", (customer_id,)).fetchone()
    return Customer.from_row(row) if row else None


def get_customer_for_user(db_path: str, user_id: int) -> Customer | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute("SELECT * FROM customers WHERE user_id = ?", (user_id,)).fetchone()
    return Customer.from_row(row) if row else None


def list_customers_by_contact(db_path: str, contact: str) -> list[Customer]:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute("SELECT * FROM customers WHERE emergency_phone = ?", (contact,)).fetchall()
    return [Customer.from_row(row) for row in rows]


# ---- sessions ----


def _load_drinks(conn: sqlite3.Connection, session_id: int) -> list[Drink]:
    rows = conn.execute(
        "SELECT * FROM drinks WHERE session_id = ? ORDER BY ordered_at, id",
        (session_id,),
    ).fetchall()
    return [Drink.from_row(row) for row in rows]


def _load_session(conn: sqlite3.Connection, row: sqlite3.Row | None) -> TabSession | None:
    if row is None:
        return None
    session = TabSession.from_row(row)
    session.drinks = _load_drinks(conn, session.id)
    return session


def _token_in_use(db_path: str, token: str) -> bool:
    with sqlite3.connect(db_path) as conn:
        row = conn.execute(
            "SELECT 1 FROM sessions WHERE join_token = ? AND is_active = 1",
            (token,),
        ).fetchone()
    return row is not None


def create_pending_session(db_path: str, *, now: Optional[datetime] = None) -> TabSession:
    started = to_iso(now or utcnow())
    for _ in range(TOKEN_INSERT_ATTEMPTS):
        token = new_unique_token(lambda t: _token_in_use(db_path, t))
        try:
            with sqlite3.connect(db_path) as conn:
                conn.row_factory = sqlite3.Row
                cur = conn.execute(
                    "INSERT INTO sessions (customer_id, join_token, started_at, is_active) VALUES (NULL, ?, ?, 1)",
                    (token, started),
                )
                session_id = int(cur.lastrowid)
                realtime.record_change(conn, "sessions", realtime.EVENT_INSERT, session_id, session_id)
                conn.commit()
                row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
                return _load_session(conn, row)
        except sqlite3.IntegrityError:
            # another tab claimed the token between the check and the insert
            continue
    raise RuntimeError("Could not allocate a unique join token")


def get_session(db_path: str, session_id: int) -> TabSession | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return _load_session(conn, row)


def find_live_session_by_token(db_path: str, token: str) -> TabSession | None:
    """Pending or active session for a join token; ended sessions never match."""
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(
            "SELECT * FROM sessions WHERE join_token = ? AND is_active = 1 AND ended_at IS NULL",
            (token,),
        ).fetchone()
        return _load_session(conn, row)


def active_session_for_customer(db_path: str, customer_id: int) -> TabSession | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(
            """
            SELECT * FROM sessions
            WHERE customer_id = ? AND is_active = 1 AND ended_at IS NULL
            ORDER BY id DESC
            LIMIT 1
            """,
            (customer_id,),
        ).fetchone()
        return _load_session(conn, row)


def join_session(
    db_path: str,
    *,
    token: str,
    customer_id: int,
    now: Optional[datetime] = None,
) -> tuple[TabSession | None, str]:
    """Attach a customer to the session behind ``token``. Returns (session, error)."""
    session = find_live_session_by_token(db_path, token)
    if session is None:
        return None, "This link is invalid or the session has ended."
    if session.status == STATUS_ACTIVE:
        if session.customer_id == customer_id:
            return session, ""
        return None, "This session already has a customer."

    current = active_session_for_customer(db_path, customer_id)
    if current is not None:
        return None, "You already have an active session."

    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        cur = conn.execute(
            """
            UPDATE sessions SET customer_id = ?, started_at = ?
            WHERE id = ? AND customer_id IS NULL AND is_active = 1
            """,
            (customer_id, to_iso(now or utcnow()), session.id),
        )
        if cur.rowcount != 1:
            return None, "This session already has a customer."
        realtime.record_change(conn, "sessions", realtime.EVENT_UPDATE, session.id, session.id)
        conn.commit()
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session.id,)).fetchone()
        return _load_session(conn, row), ""


def end_session(db_path: str, *, session_id: int, now: Optional[datetime] = None) -> TabSession | None:
    """Mark a session ended. Ending twice keeps the first end time."""
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        if row["ended_at"] is None:
            conn.execute(
                "UPDATE sessions SET is_active = 0, ended_at = ? WHERE id = ?",
                (to_iso(now or utcnow()), session_id),
            )
            realtime.record_change(conn, "sessions", realtime.EVENT_UPDATE, session_id, session_id)
            conn.commit()
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return _load_session(conn, row)


def list_active_sessions(db_path: str) -> list[tuple[TabSession, Customer]]:
    """Active sessions that have a customer attached, with their drinks."""
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            """
            SELECT s.*, c.id AS c_id, c.user_id AS c_user_id, c.name AS c_name,
                   c.weight_lb AS c_weight_lb, c.sex AS c_sex, c.emergency_phone AS c_emergency_phone
            FROM sessions s
            JOIN customers c ON c.id = s.customer_id
            WHERE s.is_active = 1 AND s.ended_at IS NULL
            ORDER BY s.started_at, s.id
            """
        ).fetchall()
        out = []
        for row in rows:
            customer = Customer.from_row(
                {
                    "id": row["c_id"],
                    "user_id": row["c_user_id"],
                    "name": row["c_name"],
                    "weight_lb": row["c_weight_lb"],
                    "sex": row["c_sex"],
                    "emergency_phone": row["c_emergency_phone"],
                }
            )
            out.append((_load_session(conn, row), customer))
    return out


def begin_chat_turn(db_path: str, session_id: int, turn_id: Optional[int] = None) -> int:
    """Register a chat request and return its turn id.

    Without a client-supplied id the next id is allocated. The session keeps
    the highest id seen so older replies can be flagged stale.
    """
    with sqlite3.connect(db_path) as conn:
        if turn_id is None:
            conn.execute("UPDATE sessions SET chat_turn = chat_turn + 1 WHERE id = ?", (session_id,))
            row = conn.execute("SELECT chat_turn FROM sessions WHERE id = ?", (session_id,)).fetchone()
            turn_id = int(row[0])
        else:
            conn.execute(
                "UPDATE sessions SET chat_turn = MAX(chat_turn, ?) WHERE id = ?",
                (int(turn_id), session_id),
            )
        conn.commit()
    return int(turn_id)


def current_chat_turn(db_path: str, session_id: int) -> int:
    with sqlite3.connect(db_path) as conn:
        row = conn.execute("SELECT chat_turn FROM sessions WHERE id = ?", (session_id,)).fetchone()
    return int(row[0]) if row else 0


# ---- drinks ----


def add_drink(
    db_path: str,
    *,
    session_id: int,
    name: str,
    volume_ml: float,
    abv: float,
    ordered_at: Optional[datetime] = None,
) -> tuple[Drink | None, str]:
    """Record a drink on an active session. Returns (drink, error)."""
    session = get_session(db_path, session_id)
    if session is None:
        return None, "Session not found"
    if session.status == STATUS_PENDING:
        return None, "No customer has joined this session yet"
    if session.status == STATUS_ENDED:
        return None, "Session has ended"

    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        cur = conn.execute(
            """
            INSERT INTO drinks (session_id, name, volume_ml, abv, ordered_at)
            SELECT ?, ?, ?, ?, ?
            WHERE EXISTS (
                SELECT 1 FROM sessions
                WHERE id = ? AND is_active = 1 AND customer_id IS NOT NULL AND ended_at IS NULL
            )
            """,
            (session_id, name.strip(), float(volume_ml), float(abv), to_iso(ordered_at or utcnow()), session_id),
        )
        if cur.rowcount != 1:
            # ended after the status check above
            return None, "Session has ended"
        drink_id = int(cur.lastrowid)
        realtime.record_change(conn, "drinks", realtime.EVENT_INSERT, drink_id, session_id)
        conn.commit()
        row = conn.execute("SELECT * FROM drinks WHERE id = ?", (drink_id,)).fetchone()
    return Drink.from_row(row), ""
