"""Tests for RefreshOrchestrator."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import timedelta
from unittest.mock import patch

import pytest

from catalogsync.algolia.credentials import CredentialStore
from catalogsync.algolia.extractor import KeyExtractionResult
from catalogsync.catalog.fetcher import StaticCatalogFetcher
from catalogsync.catalog.ontology import read_categories, read_tags, rebuild
from catalogsync.catalog.orchestrator import (
    RefreshOrchestrator,
    RefreshState,
    create_orchestrator,
)
from catalogsync.catalog.types import TagType
from catalogsync.config import SyncConfig
from catalogsync.db.connection import Database
from catalogsync.db.products import get_product, get_store_product
from catalogsync.db.settings import get_active_store, get_last_refreshed
from catalogsync.db.status import utc_now
from catalogsync.db.stores import get_store
from catalogsync.errors import AuthError, NetworkError

from conftest import API_KEY, APP_ID, FakeExtractor, make_hit


def _orchestrator(db, responses, extractor=None):
    fetcher = StaticCatalogFetcher(responses)
    credentials = CredentialStore(db)
    extractor = extractor or FakeExtractor()
    return RefreshOrchestrator(db, fetcher, credentials, extractor), fetcher, extractor


def _count(db, table):
    return db.connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


class TestRefresh:
    """Single-store fetch-then-commit."""

    @pytest.mark.asyncio
    async def test_success_commits_everything(self, db):
        pages = [
            [make_hit("1", category="Dairy > Milk", filter_tags=["Organic"])],
            [make_hit("2", category="Dairy > Cheese", filter_tags=["Organic", "Local"])],
        ]
        orchestrator, fetcher, extractor = _orchestrator(db, {"74": [pages]})

        result = await orchestrator.refresh("74")

        assert result.success is True
        assert result.products_added == 2
        assert result.attempts == 1
        assert result.categories_count == 3
        assert result.tags_count == 2
        assert orchestrator.state_of("74") == RefreshState.DONE
        assert extractor.calls == 1
        assert _count(db, "store_products") == 2
        assert get_store(db.connection, "74").catalog_refreshed_at == result.refreshed_at
        assert get_last_refreshed(db.connection) == result.refreshed_at
        dairy = [c for c in read_categories(db.connection) if c.path == "Dairy"][0]
        assert dairy.product_count == 2

    @pytest.mark.asyncio
    async def test_uses_stored_credentials(self, db):
        orchestrator, fetcher, extractor = _orchestrator(db, {"74": [[[make_hit("1")]]]})
        orchestrator.credentials.store(API_KEY, APP_ID)

        await orchestrator.refresh("74")

        assert extractor.calls == 0
        assert fetcher.calls[0]["api_key"] == API_KEY
        assert fetcher.calls[0]["app_id"] == APP_ID

    @pytest.mark.asyncio
    async def test_progress_reported_per_batch(self, db):
        pages = [[make_hit("1"), make_hit("2")], [make_hit("3")]]
        orchestrator, _, _ = _orchestrator(db, {"74": [pages]})
        seen = []

        await orchestrator.refresh("74", on_progress=seen.append)

        fetching = [p for p in seen if p.phase.value == "fetching"]
        assert [p.current for p in fetching] == [2, 3]
        assert all(p.store_number == "74" for p in fetching)
        phases = [p.phase.value for p in seen]
        assert phases.index("planning") < phases.index("fetching") < phases.index("committing")

    @pytest.mark.asyncio
    async def test_network_error_is_terminal(self, db):
        orchestrator, fetcher, extractor = _orchestrator(
            db, {"74": [NetworkError("Algolia error: 500 Internal Server Error", status=500)]}
        )

        result = await orchestrator.refresh("74")

        assert result.success is False
        assert result.status == 500
        assert result.error_kind == "network"
        assert result.attempts == 1
        assert len(fetcher.calls) == 1
        assert orchestrator.state_of("74") == RefreshState.FAILED

    @pytest.mark.asyncio
    async def test_failure_mid_fetch_commits_nothing(self, db):
        orchestrator, _, _ = _orchestrator(
            db, {"74": [([[make_hit("1")], [make_hit("2")]], NetworkError("reset"))]}
        )

        result = await orchestrator.refresh("74")

        assert result.success is False
        assert _count(db, "products") == 0
        assert _count(db, "stores") == 0

    @pytest.mark.asyncio
    async def test_extraction_failure(self, db):
        extractor = FakeExtractor([KeyExtractionResult(success=False, error="blocked")])
        orchestrator, fetcher, _ = _orchestrator(db, {"74": [[[make_hit("1")]]]}, extractor)

        result = await orchestrator.refresh("74")

        assert result.success is False
        assert result.error_kind == "extraction_failed"
        assert "blocked" in result.error
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_commit_failure_rolls_back(self, db):
        orchestrator, _, _ = _orchestrator(db, {"74": [[[make_hit("1")]]]})

        with patch(
            "catalogsync.catalog.orchestrator.rebuild",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            result = await orchestrator.refresh("74")

        assert result.success is False
        assert result.error_kind == "commit_failed"
        assert "disk I/O error" in result.error
        assert _count(db, "products") == 0
        assert _count(db, "store_products") == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_result(self, db):
        orchestrator, _, _ = _orchestrator(db, {"74": [RuntimeError("bug")]})

        result = await orchestrator.refresh("74")

        assert result.success is False
        assert result.error == "bug"
        assert result.error_kind == "RuntimeError"

    @pytest.mark.asyncio
    async def test_repeat_refresh_is_idempotent(self, db):
        hits = [make_hit("1", category="Dairy"), make_hit("2", category="Dairy")]
        orchestrator, _, _ = _orchestrator(db, {"74": [[hits]]})

        await orchestrator.refresh("74")
        await orchestrator.refresh("74")

        assert _count(db, "products") == 2
        assert read_categories(db.connection)[0].product_count == 2


class TestAuthRetry:
    """Exactly one credential refresh on 401/403."""

    @pytest.mark.asyncio
    async def test_401_then_success(self, db):
        second = [[make_hit("a"), make_hit("b"), make_hit("c")]]
        orchestrator, fetcher, extractor = _orchestrator(
            db, {"74": [AuthError("Algolia error: 401 Unauthorized", status=401), second]}
        )
        orchestrator.credentials.store(API_KEY, APP_ID)
        seen = []

        with patch.object(
            orchestrator.credentials,
            "invalidate",
            wraps=orchestrator.credentials.invalidate,
        ) as invalidate:
            result = await orchestrator.refresh("74", on_progress=seen.append)

        assert result.success is True
        assert result.products_added == 3
        assert result.attempts == 2
        assert invalidate.call_count == 1
        assert extractor.calls == 1
        assert fetcher.calls[0]["api_key"] == API_KEY
        assert fetcher.calls[1]["api_key"] != API_KEY
        assert any("credentials expired" in p.message for p in seen)

    @pytest.mark.asyncio
    async def test_403_also_retries(self, db):
        orchestrator, fetcher, _ = _orchestrator(
            db, {"74": [AuthError("forbidden", status=403), [[make_hit("1")]]]}
        )

        result = await orchestrator.refresh("74")

        assert result.success is True
        assert len(fetcher.calls) == 2

    @pytest.mark.asyncio
    async def test_two_auth_failures_are_terminal(self, db):
        orchestrator, fetcher, extractor = _orchestrator(
            db, {"74": [AuthError("Algolia error: 401 Unauthorized", status=401)]}
        )

        result = await orchestrator.refresh("74")

        assert result.success is False
        assert result.status == 401
        assert result.error_kind == "auth"
        assert len(fetcher.calls) == 2
        assert extractor.calls == 2

    @pytest.mark.asyncio
    async def test_extraction_failure_after_auth_error(self, db):
        extractor = FakeExtractor(
            [
                KeyExtractionResult(success=True, api_key=API_KEY, app_id=APP_ID),
                KeyExtractionResult(success=False, error="no chunks"),
            ]
        )
        orchestrator, fetcher, _ = _orchestrator(
            db, {"74": [AuthError("expired", status=401)]}, extractor
        )

        result = await orchestrator.refresh("74")

        assert result.success is False
        assert result.error.startswith(
            "Failed to extract fresh API credentials after auth error"
        )
        assert len(fetcher.calls) == 1


class TestRefreshIfNeeded:
    @pytest.mark.asyncio
    async def test_fresh_catalog_skipped(self, db):
        orchestrator, fetcher, _ = _orchestrator(db, {"74": [[[make_hit("1")]]]})
        await orchestrator.refresh("74")

        assert await orchestrator.refresh_if_needed("74") is None
        assert len(fetcher.calls) == 1

    @pytest.mark.asyncio
    async def test_empty_catalog_refreshed(self, db):
        orchestrator, _, _ = _orchestrator(db, {"74": [[[make_hit("1")]]]})

        result = await orchestrator.refresh_if_needed("74")

        assert result is not None and result.success

    @pytest.mark.asyncio
    async def test_stale_catalog_refreshed(self, db):
        orchestrator, fetcher, _ = _orchestrator(db, {"74": [[[make_hit("1")]]]})
        orchestrator.commit("74", [make_hit("1")], now=utc_now() - timedelta(hours=25))

        result = await orchestrator.refresh_if_needed("74")

        assert result.success is True
        assert len(fetcher.calls) == 1

    @pytest.mark.asyncio
    async def test_force(self, db):
        orchestrator, fetcher, _ = _orchestrator(db, {"74": [[[make_hit("1")]]]})
        await orchestrator.refresh("74")

        await orchestrator.refresh_if_needed("74", force=True)
        assert len(fetcher.calls) == 2


class TestActivate:
    @pytest.mark.asyncio
    async def test_sets_active_store_and_refreshes(self, db):
        orchestrator, _, _ = _orchestrator(db, {"59": [[[make_hit("1", store_number="59")]]]})

        result = await orchestrator.activate("59")

        assert get_active_store(db.connection) == "59"
        assert result.success is True
        assert get_product(db.connection, "1") is not None

    @pytest.mark.asyncio
    async def test_failed_refresh_still_records_store(self, db):
        orchestrator, _, _ = _orchestrator(db, {"59": [NetworkError("down")]})

        result = await orchestrator.activate("59")

        assert result.success is False
        assert get_active_store(db.connection) == "59"
        assert get_store(db.connection, "59").name == "59"


class TestCreateOrchestrator:
    def test_wires_network_components(self, db):
        config = SyncConfig(refresh={"stale_threshold_hours": 12})
        orchestrator = create_orchestrator(config, db)

        assert orchestrator.stale_threshold == timedelta(hours=12)
        assert orchestrator.fetcher.max_pages == config.algolia.max_pages
        assert orchestrator.extract_fn.args == (
            config.homepage_url,
            config.refresh.extraction_timeout,
        )


class TestOntologyAfterRefresh:
    @pytest.mark.asyncio
    async def test_tag_counts(self, db):
        page = [
            make_hit("1", filter_tags=["Organic", "Gluten Free"]),
            make_hit("2", filter_tags=["Organic"]),
        ]
        orchestrator, _, _ = _orchestrator(db, {"74": [[page]]})

        await orchestrator.refresh("74")

        tags = {(t.name, t.type): t.product_count for t in read_tags(db.connection)}
        assert tags[("Organic", TagType.FILTER)] == 2
        assert tags[("Gluten Free", TagType.FILTER)] == 1


class TestCatalogReplacement:
    """A refresh replaces the store's catalog instead of merging into it."""

    @pytest.mark.asyncio
    async def test_delisted_products_removed(self, db):
        orchestrator, _, _ = _orchestrator(
            db,
            {
                "74": [
                    [[make_hit("1", category="Dairy"), make_hit("2", category="Dairy")]],
                    [[make_hit("1", category="Dairy")]],
                ]
            },
        )

        await orchestrator.refresh("74")
        result = await orchestrator.refresh("74")

        assert result.products_added == 1
        assert result.products_removed == 1
        assert orchestrator.status("74").product_count == 1
        assert get_store_product(db.connection, "2", "74") is None
        assert get_store_product(db.connection, "1", "74") is not None
        assert get_product(db.connection, "2") is not None

    @pytest.mark.asyncio
    async def test_product_carried_by_other_store_survives(self, db):
        orchestrator, _, _ = _orchestrator(
            db,
            {
                "74": [[[make_hit("1"), make_hit("2")]], [[make_hit("1")]]],
                "59": [[[make_hit("2", store_number="59")]]],
            },
        )

        await orchestrator.refresh("74")
        await orchestrator.refresh("59")
        await orchestrator.refresh("74")

        assert get_store_product(db.connection, "2", "74") is None
        assert get_store_product(db.connection, "2", "59") is not None
        assert get_product(db.connection, "2") is not None
        assert orchestrator.status("59").product_count == 1

    @pytest.mark.asyncio
    async def test_empty_refresh_leaves_fresh_empty_catalog(self, db):
        orchestrator, _, _ = _orchestrator(db, {"74": [[[make_hit("1")]], []]})

        await orchestrator.refresh("74")
        result = await orchestrator.refresh("74")
        status = orchestrator.status("74")

        assert result.success is True
        assert result.products_removed == 1
        assert status.is_empty is True
        assert status.is_stale is False
        assert await orchestrator.refresh_if_needed("74") is not None


class TestCommitOffEventLoop:
    """Commits run in a worker thread."""

    @pytest.mark.asyncio
    async def test_commit_runs_in_worker_thread(self, db):
        orchestrator, _, _ = _orchestrator(db, {"74": [[[make_hit("1")]]]})
        threads = []

        def spy(conn):
            threads.append(threading.get_ident())
            return rebuild(conn)

        with patch("catalogsync.catalog.orchestrator.rebuild", side_effect=spy):
            result = await orchestrator.refresh("74")

        assert result.success is True
        assert threads and threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_lock_wait_does_not_block_event_loop(self, tmp_path):
        path = tmp_path / "contended.db"
        db = Database(path, lock_retry_max=0, busy_timeout_ms=5000)
        orchestrator, _, _ = _orchestrator(db, {"74": [[[make_hit("1")]]]})
        orchestrator.credentials.store(API_KEY, APP_ID)
        other = sqlite3.connect(str(path), isolation_level=None, timeout=0)
        other.execute("BEGIN IMMEDIATE")
        try:
            task = asyncio.create_task(orchestrator.refresh("74"))
            await asyncio.sleep(0.2)
            assert not task.done()
            other.execute("ROLLBACK")
            result = await task
        finally:
            other.close()
            db.close()

        assert result.success is True
        assert result.products_added == 1
