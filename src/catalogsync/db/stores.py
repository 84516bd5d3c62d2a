"""Store table operations."""

from __future__ import annotations

import sqlite3
from typing import List, Optional

from ..catalog.types import Store


def upsert_store(conn: sqlite3.Connection, store: Store) -> None:
    """Insert or update a store's directory data."""
    conn.execute(
        """
        INSERT INTO stores (
            store_number, name, city, state, zip_code, street_address,
            latitude, longitude, has_pickup, has_delivery, has_ecommerce,
            last_updated
        ) VALUES (
            :store_number, :name, :city, :state, :zip_code, :street_address,
            :latitude, :longitude, :has_pickup, :has_delivery, :has_ecommerce,
            :last_updated
        )
        ON CONFLICT(store_number) DO UPDATE SET
            name = excluded.name,
            city = excluded.city,
            state = excluded.state,
            zip_code = excluded.zip_code,
            street_address = excluded.street_address,
            latitude = excluded.latitude,
            longitude = excluded.longitude,
            has_pickup = excluded.has_pickup,
            has_delivery = excluded.has_delivery,
            has_ecommerce = excluded.has_ecommerce,
            last_updated = COALESCE(excluded.last_updated, stores.last_updated)
        """,
        {
            **store.to_dict(),
            "has_pickup": int(store.has_pickup),
            "has_delivery": int(store.has_delivery),
            "has_ecommerce": int(store.has_ecommerce),
        },
    )


def ensure_store(conn: sqlite3.Connection, store_number: str) -> bool:
    """Create a placeholder row named after the store number if missing.

    Returns True when a row was created.
    """
    cur = conn.execute(
        "INSERT OR IGNORE INTO stores (store_number, name) VALUES (?, ?)",
        (store_number, store_number),
    )
    return cur.rowcount > 0


def touch_store(conn: sqlite3.Connection, store_number: str, timestamp: str) -> None:
    """Stamp a completed catalog refresh; directory data keeps its own stamp."""
    conn.execute(
        "UPDATE stores SET catalog_refreshed_at = ? WHERE store_number = ?",
        (timestamp, store_number),
    )


def _row_to_store(row: sqlite3.Row) -> Store:
    return Store(
        store_number=row["store_number"],
        name=row["name"],
        city=row["city"],
        state=row["state"],
        zip_code=row["zip_code"],
        street_address=row["street_address"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        has_pickup=bool(row["has_pickup"]),
        has_delivery=bool(row["has_delivery"]),
        has_ecommerce=bool(row["has_ecommerce"]),
        last_updated=row["last_updated"],
        catalog_refreshed_at=row["catalog_refreshed_at"],
    )


def get_store(conn: sqlite3.Connection, store_number: str) -> Optional[Store]:
    row = conn.execute(
        "SELECT * FROM stores WHERE store_number = ?", (store_number,)
    ).fetchone()
    return _row_to_store(row) if row else None


def list_stores(conn: sqlite3.Connection, state: Optional[str] = None) -> List[Store]:
    """All known stores, optionally filtered by state, ordered by number."""
    if state:
        rows = conn.execute(
            "SELECT * FROM stores WHERE state = ? "
            "ORDER BY CAST(store_number AS INTEGER)",
            (state.upper(),),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM stores ORDER BY CAST(store_number AS INTEGER)"
        ).fetchall()
    return [_row_to_store(row) for row in rows]
