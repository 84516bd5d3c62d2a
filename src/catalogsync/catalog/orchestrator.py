"""
Refresh Orchestrator.

Runs one store's catalog refresh:
    IDLE -> FETCHING -> COMMITTING -> DONE
with a single AUTH_RETRY detour when the API rejects the key.

The whole fetch happens in memory before the write transaction opens, so the
SQLite write lock is never held across a network wait. The commit itself runs
in a worker thread so a large write or a lock wait never stalls the event loop. Failures come back as
RefreshResult objects; nothing raises out of ``refresh``.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from functools import partial
from typing import Any, Dict, List, Optional

import httpx

from ..algolia.client import AlgoliaClient
from ..algolia.credentials import CredentialStore, Credentials, ExtractFn
from ..algolia.extractor import extract_algolia_key
from ..config import SyncConfig
from ..db.connection import Database
from ..db.products import prune_store_products, upsert_record
from ..db.settings import set_active_store, set_last_refreshed
from ..db.status import (
    STALE_THRESHOLD,
    CatalogStatus,
    format_timestamp,
    get_catalog_status,
    utc_now,
)
from ..db.stores import ensure_store, touch_store
from ..errors import AuthError, CatalogSyncError, CommitFailed, ExtractionFailed
from .fetcher import AlgoliaCatalogFetcher, Batch, CatalogFetcher
from .ontology import rebuild
from .progress import Phase, Progress, ProgressCallback, ProgressReporter
from .transform import build_records

logger = logging.getLogger(__name__)


class RefreshState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    AUTH_RETRY = "auth_retry"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RefreshResult:
    """Outcome of one store refresh."""

    store_number: str
    success: bool
    products_added: int = 0
    products_removed: int = 0
    categories_count: int = 0
    tags_count: int = 0
    skipped: int = 0
    attempts: int = 0
    error: Optional[str] = None
    status: Optional[int] = None
    error_kind: Optional[str] = None
    refreshed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "store_number": self.store_number,
            "success": self.success,
            "products_added": self.products_added,
            "products_removed": self.products_removed,
            "categories_count": self.categories_count,
            "tags_count": self.tags_count,
            "skipped": self.skipped,
            "attempts": self.attempts,
            "refreshed_at": self.refreshed_at,
        }
        if not self.success:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
            if self.status is not None:
                result["status"] = self.status
        return result


@dataclass
class CommitStats:
    products: int
    removed: int
    skipped: int
    categories: int
    tags: int
    refreshed_at: str


class RefreshOrchestrator:
    """Single-store refresh with auth-retry-once semantics."""

    def __init__(
        self,
        db: Database,
        fetcher: CatalogFetcher,
        credentials: CredentialStore,
        extract_fn: ExtractFn,
        stale_threshold: timedelta = STALE_THRESHOLD,
    ):
        self.db = db
        self.fetcher = fetcher
        self.credentials = credentials
        self.extract_fn = extract_fn
        self.stale_threshold = stale_threshold
        self.states: Dict[str, RefreshState] = {}

    def state_of(self, store_number: str) -> RefreshState:
        return self.states.get(str(store_number), RefreshState.IDLE)

    def _set_state(self, store_number: str, state: RefreshState) -> None:
        self.states[store_number] = state
        logger.debug(f"Store {store_number}: {state.value}")

    async def refresh(
        self,
        store_number: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RefreshResult:
        """Fetch and commit one store's catalog."""
        store_number = str(store_number)
        reporter = ProgressReporter(on_progress)
        result = RefreshResult(store_number=store_number, success=False)
        self._set_state(store_number, RefreshState.IDLE)

        for attempt in (1, 2):
            result.attempts = attempt
            credentials: Optional[Credentials] = None
            try:
                credentials = await self.credentials.ensure(self.extract_fn, reporter)

                self._set_state(store_number, RefreshState.FETCHING)
                hits = await self._fetch_all(credentials, store_number, reporter)

                self._set_state(store_number, RefreshState.COMMITTING)
                reporter.emit(
                    Progress(
                        Phase.COMMITTING,
                        0,
                        len(hits),
                        f"Store {store_number}: committing {len(hits)} records",
                        store_number,
                    )
                )
                stats = await asyncio.to_thread(self.commit, store_number, hits)

            except AuthError as e:
                if attempt == 1:
                    self._set_state(store_number, RefreshState.AUTH_RETRY)
                    logger.warning(
                        f"Store {store_number}: auth error {e.status}, "
                        "re-extracting credentials and retrying once"
                    )
                    await asyncio.to_thread(self.credentials.invalidate, credentials)
                    reporter.emit(
                        Progress(
                            Phase.PLANNING,
                            0,
                            0,
                            "API credentials expired, extracting fresh credentials...",
                            store_number,
                        )
                    )
                    continue
                return self._fail(result, e)

            except ExtractionFailed as e:
                if attempt == 1:
                    return self._fail(result, e)
                return self._fail(
                    result,
                    ExtractionFailed(
                        f"Failed to extract fresh API credentials after auth error: {e}"
                    ),
                )

            except CatalogSyncError as e:
                return self._fail(result, e)

            except Exception as e:
                logger.exception(f"Store {store_number}: unexpected refresh failure")
                return self._fail(result, e)

            self._set_state(store_number, RefreshState.DONE)
            result.success = True
            result.products_added = stats.products
            result.products_removed = stats.removed
            result.skipped = stats.skipped
            result.categories_count = stats.categories
            result.tags_count = stats.tags
            result.refreshed_at = stats.refreshed_at
            if stats.products == 0:
                logger.warning(f"Store {store_number}: refresh returned no products")
            logger.info(
                f"Store {store_number}: refreshed {stats.products} products "
                f"({stats.categories} categories, {stats.tags} tags)"
            )
            reporter.emit(
                Progress(
                    Phase.COMMITTING,
                    stats.products,
                    stats.products,
                    f"Store {store_number}: {stats.products} products committed",
                    store_number,
                )
            )
            return result

        # Unreachable: the second attempt always returns
        return self._fail(result, CatalogSyncError("Refresh did not complete"))

    async def _fetch_all(
        self,
        credentials: Credentials,
        store_number: str,
        reporter: ProgressReporter,
    ) -> Batch:
        hits: Batch = []
        async for batch in self.fetcher.fetch(
            credentials.api_key, credentials.app_id, store_number
        ):
            hits.extend(batch)
            reporter.emit(
                Progress(
                    Phase.FETCHING,
                    len(hits),
                    0,
                    f"Store {store_number}: fetched {len(hits)} records",
                    store_number,
                )
            )
        return hits

    def commit(
        self,
        store_number: str,
        hits: List[Dict[str, Any]],
        now: Optional[datetime] = None,
    ) -> CommitStats:
        """Apply a fully fetched store catalog in one transaction.

        The fetched records replace the store's previous catalog: store rows
        the refresh did not write are delisted. Product rows are kept.
        """
        refreshed_at = format_timestamp(now or utc_now())
        records, skipped = build_records(hits, store_number, refreshed_at)
        try:
            with self.db.transaction() as conn:
                ensure_store(conn, store_number)
                for record in records:
                    upsert_record(conn, record)
                removed = prune_store_products(conn, store_number, refreshed_at)
                categories, tags = rebuild(conn)
                touch_store(conn, store_number, refreshed_at)
                set_last_refreshed(conn, refreshed_at)
        except sqlite3.Error as e:
            raise CommitFailed(
                f"Commit for store {store_number} failed: {e}"
            ) from e
        if removed:
            logger.info(f"Store {store_number}: delisted {removed} products")
        return CommitStats(
            products=len(records),
            removed=removed,
            skipped=skipped,
            categories=categories,
            tags=tags,
            refreshed_at=refreshed_at,
        )

    def _fail(self, result: RefreshResult, error: Exception) -> RefreshResult:
        self._set_state(result.store_number, RefreshState.FAILED)
        result.success = False
        result.error = str(error)
        result.error_kind = getattr(error, "kind", type(error).__name__)
        result.status = getattr(error, "status", None)
        logger.error(f"Store {result.store_number}: refresh failed: {result.error}")
        return result

    def status(
        self, store_number: str, now: Optional[datetime] = None
    ) -> CatalogStatus:
        with self.db.locked() as conn:
            return get_catalog_status(
                conn, str(store_number), now, self.stale_threshold
            )

    async def refresh_if_needed(
        self,
        store_number: str,
        force: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Optional[RefreshResult]:
        """Refresh when the catalog is empty, stale or ``force`` is set.

        Returns None when no refresh was needed.
        """
        status = await asyncio.to_thread(self.status, store_number)
        if not force and not status.is_empty and not status.is_stale:
            logger.debug(f"Store {store_number}: catalog is fresh")
            return None
        return await self.refresh(store_number, on_progress)

    def _set_active(self, store_number: str) -> None:
        with self.db.transaction() as conn:
            ensure_store(conn, store_number)
            set_active_store(conn, store_number)

    async def activate(
        self,
        store_number: str,
        force: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Optional[RefreshResult]:
        """Make ``store_number`` the active store and make sure it has data."""
        store_number = str(store_number)
        await asyncio.to_thread(self._set_active, store_number)
        logger.info(f"Active store set to {store_number}")
        return await self.refresh_if_needed(store_number, force, on_progress)


def create_orchestrator(
    config: SyncConfig,
    db: Database,
    http_client: Optional[httpx.AsyncClient] = None,
) -> RefreshOrchestrator:
    """Wire the network-backed fetcher and extractor from config."""
    client = AlgoliaClient(config.algolia, http_client)
    extract_fn = partial(
        extract_algolia_key,
        config.homepage_url,
        config.refresh.extraction_timeout,
    )
    return RefreshOrchestrator(
        db,
        AlgoliaCatalogFetcher(client, config.algolia.max_pages),
        CredentialStore(db),
        extract_fn,
        stale_threshold=timedelta(hours=config.refresh.stale_threshold_hours),
    )
