"""
Catalog freshness.

A store's catalog age is the later of its newest ``store_products.last_updated``
and ``stores.catalog_refreshed_at``; the latter covers refreshes that came
back empty. Timestamps are stored as UTC ISO-8601 strings.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

STALE_THRESHOLD = timedelta(hours=24)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp; naive values are taken as UTC."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_stale(
    last_updated: Optional[datetime],
    now: Optional[datetime] = None,
    threshold: timedelta = STALE_THRESHOLD,
) -> bool:
    """True when the data is older than ``threshold`` or was never stamped."""
    if last_updated is None:
        return True
    now = now or utc_now()
    return now - last_updated > threshold


@dataclass
class CatalogStatus:
    """Computed freshness of one store's catalog."""

    store_number: str
    is_empty: bool
    is_stale: bool
    product_count: int
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "store_number": self.store_number,
            "is_empty": self.is_empty,
            "is_stale": self.is_stale,
            "product_count": self.product_count,
            "last_updated": (
                format_timestamp(self.last_updated) if self.last_updated else None
            ),
        }


def _latest(*stamps: Optional[str]) -> Optional[datetime]:
    parsed = [parse_timestamp(s) for s in stamps if s]
    return max(parsed) if parsed else None


def get_catalog_status(
    conn: sqlite3.Connection,
    store_number: str,
    now: Optional[datetime] = None,
    threshold: timedelta = STALE_THRESHOLD,
) -> CatalogStatus:
    row = conn.execute(
        """
        SELECT
            (SELECT COUNT(*) FROM store_products WHERE store_number = :store),
            (SELECT MAX(last_updated) FROM store_products WHERE store_number = :store),
            (SELECT catalog_refreshed_at FROM stores WHERE store_number = :store)
        """,
        {"store": store_number},
    ).fetchone()
    count = row[0] or 0
    last_updated = _latest(row[1], row[2])
    return CatalogStatus(
        store_number=store_number,
        is_empty=count == 0,
        is_stale=is_stale(last_updated, now, threshold),
        product_count=count,
        last_updated=last_updated,
    )


_CATALOGED_STORES = """
    SELECT
        s.store_number,
        (SELECT MAX(sp.last_updated) FROM store_products sp
         WHERE sp.store_number = s.store_number),
        s.catalog_refreshed_at
    FROM stores s
    WHERE s.catalog_refreshed_at IS NOT NULL
       OR EXISTS (
           SELECT 1 FROM store_products sp WHERE sp.store_number = s.store_number
       )
"""


def list_stale_stores(
    conn: sqlite3.Connection,
    now: Optional[datetime] = None,
    threshold: timedelta = STALE_THRESHOLD,
) -> List[str]:
    """Cataloged stores that are due for refresh, oldest first.

    A store counts as cataloged once it holds products or has completed a
    refresh, so a store whose last refresh came back empty is still revisited.
    """
    stale = []
    for store_number, products_updated, refreshed_at in conn.execute(
        _CATALOGED_STORES
    ):
        last_updated = _latest(products_updated, refreshed_at)
        if is_stale(last_updated, now, threshold):
            stale.append((last_updated, store_number))

    epoch = datetime.min.replace(tzinfo=timezone.utc)
    stale.sort(key=lambda item: (item[0] or epoch, item[1]))
    return [store_number for _, store_number in stale]


def count_cataloged_stores(conn: sqlite3.Connection) -> int:
    """Number of stores that hold catalog rows or have been refreshed."""
    row = conn.execute(f"SELECT COUNT(*) FROM ({_CATALOGED_STORES})").fetchone()
    return row[0] or 0
