"""Key-value settings table."""

from __future__ import annotations

import sqlite3
from typing import Optional

ACTIVE_STORE = "active_store"
CATALOG_LAST_REFRESHED = "catalog_last_refreshed"
STORES_LAST_UPDATED = "stores_last_updated"


def get_setting(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    return row[0] if row else None


def set_setting(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        """
        INSERT INTO settings (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (key, value),
    )


def get_active_store(conn: sqlite3.Connection) -> Optional[str]:
    return get_setting(conn, ACTIVE_STORE)


def set_active_store(conn: sqlite3.Connection, store_number: str) -> None:
    set_setting(conn, ACTIVE_STORE, str(store_number))


def get_last_refreshed(conn: sqlite3.Connection) -> Optional[str]:
    return get_setting(conn, CATALOG_LAST_REFRESHED)


def set_last_refreshed(conn: sqlite3.Connection, timestamp: str) -> None:
    set_setting(conn, CATALOG_LAST_REFRESHED, timestamp)
