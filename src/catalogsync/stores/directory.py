"""
Store directory sync.

The directory endpoint returns a flat JSON array of stores. We cache it in the
``stores`` table and refetch once the cache is older than 24 hours. If a fetch
fails and a cached list exists, the cached list is served instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..catalog.types import Store
from ..db.connection import Database
from ..db.settings import STORES_LAST_UPDATED, get_setting, set_setting
from ..db.status import format_timestamp, is_stale, parse_timestamp, utc_now
from ..db.stores import list_stores, upsert_store
from ..errors import NetworkError

logger = logging.getLogger(__name__)


class StoreListing(BaseModel):
    """One entry of the directory response."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    store_number: Union[int, str] = Field(alias="storeNumber")
    name: str
    city: Optional[str] = None
    state: Optional[str] = Field(default=None, alias="stateAbbreviation")
    zip_code: Optional[Union[str, int]] = Field(default=None, alias="zip")
    street_address: Optional[str] = Field(default=None, alias="streetAddress")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    has_pickup: bool = Field(default=False, alias="hasPickup")
    has_delivery: bool = Field(default=False, alias="hasDelivery")
    has_ecommerce: bool = Field(default=False, alias="hasECommerce")

    def to_store(self, last_updated: Optional[str] = None) -> Store:
        return Store(
            store_number=str(self.store_number),
            name=self.name,
            city=self.city,
            state=self.state,
            zip_code=str(self.zip_code) if self.zip_code is not None else None,
            street_address=self.street_address,
            latitude=self.latitude,
            longitude=self.longitude,
            has_pickup=self.has_pickup,
            has_delivery=self.has_delivery,
            has_ecommerce=self.has_ecommerce,
            last_updated=last_updated,
        )


_LISTINGS = TypeAdapter(List[StoreListing])


@dataclass
class DirectoryResult:
    stores: List[Store] = field(default_factory=list)
    from_cache: bool = False
    error: Optional[str] = None


async def fetch_store_directory(
    client: httpx.AsyncClient, url: str
) -> List[StoreListing]:
    """GET the store list. Raises NetworkError on any failure."""
    try:
        response = await client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as e:
        raise NetworkError(f"Store directory request failed: {e}") from e

    if response.status_code >= 400:
        raise NetworkError(
            f"Store directory error: {response.status_code} {response.reason_phrase}",
            status=response.status_code,
        )
    try:
        return _LISTINGS.validate_python(response.json())
    except (ValueError, ValidationError) as e:
        raise NetworkError(f"Malformed store directory response: {e}") from e


def sync_stores(
    db: Database, listings: List[StoreListing], now: Optional[datetime] = None
) -> int:
    """Upsert every listing in one transaction and stamp the sync time."""
    stamp = format_timestamp(now or utc_now())
    with db.transaction() as conn:
        for listing in listings:
            upsert_store(conn, listing.to_store(stamp))
        set_setting(conn, STORES_LAST_UPDATED, stamp)
    logger.info(f"Synced {len(listings)} stores")
    return len(listings)


def _cached_stores(db: Database) -> List[Store]:
    with db.locked() as conn:
        return list_stores(conn)


def is_directory_stale(db: Database, now: Optional[datetime] = None) -> bool:
    with db.locked() as conn:
        stamp = get_setting(conn, STORES_LAST_UPDATED)
    return is_stale(parse_timestamp(stamp), now)


async def refresh_store_directory(
    db: Database,
    client: httpx.AsyncClient,
    url: str,
    force: bool = False,
    now: Optional[datetime] = None,
) -> DirectoryResult:
    """Return the store list, refetching when stale or forced."""
    cached = await asyncio.to_thread(_cached_stores, db)
    if cached and not force and not is_directory_stale(db, now):
        return DirectoryResult(stores=cached, from_cache=True)

    try:
        listings = await fetch_store_directory(client, url)
    except NetworkError as e:
        if cached:
            logger.warning(f"Store directory fetch failed, using cache: {e}")
            return DirectoryResult(stores=cached, from_cache=True, error=str(e))
        raise

    await asyncio.to_thread(sync_stores, db, listings, now)
    return DirectoryResult(stores=await asyncio.to_thread(_cached_stores, db))
