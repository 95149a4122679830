"""SQLite-backed user accounts (identity for customers)."""

from __future__ import annotations

import sqlite3
from typing import Any

from werkzeug.security import check_password_hash, generate_password_hash

_USER_COLUMNS = "id, email, display_name, sex, default_weight_lb"


def init_db(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                display_name TEXT NOT NULL,
                sex TEXT NOT NULL DEFAULT 'male',
                default_weight_lb REAL NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        conn.commit()


def _user_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "email": row["email"],
        "display_name": row["display_name"],
        "sex": row["sex"],
        "default_weight_lb": row["default_weight_lb"],
    }


def create_user(
    db_path: str,
    *,
    email: str,
    password: str,
    display_name: str,
    sex: str,
    default_weight_lb: float,
) -> dict[str, Any] | None:
    password_hash = generate_password_hash(password)
    try:
        with sqlite3.connect(db_path) as conn:
            cur = conn.execute(
                """
                INSERT INTO users (email, password_hash, display_name, sex, default_weight_lb)
                VALUES (?, ?, ?, ?, ?)
                """,
                (email.lower().strip(), password_hash, display_name.strip(), sex, float(default_weight_lb)),
            )
            conn.commit()
            user_id = int(cur.lastrowid)
    except sqlite3.IntegrityError:
        return None

    return {
        "id": user_id,
        "email": email.lower().strip(),
        "display_name": display_name.strip(),
        "sex": sex,
        "default_weight_lb": float(default_weight_lb),
    }


def authenticate_user(db_path: str, *, email: str, password: str) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(
            f"SELECT {_USER_COLUMNS}, password_hash FROM users WHERE email = ?",
            (email.lower().strip(),),
        ).fetchone()

    if row is None:
        return None
    try:
        ok = check_password_hash(row["password_hash"], password)
    except ValueError:
        return None
    if not ok:
        return None
    return _user_dict(row)


def get_user_by_id(db_path: str, user_id: int) -> dict[str, Any] | None:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        return None
    return _user_dict(row)
