"""Tests for paginated fetchers."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from catalogsync.algolia.client import AlgoliaClient, store_filter
from catalogsync.catalog.fetcher import AlgoliaCatalogFetcher, StaticCatalogFetcher
from catalogsync.config import AlgoliaConfig
from catalogsync.errors import AuthError, IncompleteCatalog, NetworkError

from conftest import API_KEY, APP_ID, make_hit

SCOPE = store_filter("74")


class FakeIndex:
    """Serves count queries and pages keyed by the query's extra filter.

    ``pages`` maps a filter (None for the unsplit query) to its result pages.
    Count queries report the number of hits under that filter unless ``counts``
    overrides the count and facets.
    """

    def __init__(
        self,
        pages: Dict[Optional[str], List[List[Dict[str, Any]]]],
        counts: Optional[Dict[Optional[str], tuple]] = None,
        page_nb_hits: Optional[int] = None,
        fail_on: Optional[tuple] = None,
        status: int = 500,
    ):
        self.pages = pages
        self.counts = counts or {}
        self.page_nb_hits = page_nb_hits
        self.fail_on = fail_on
        self.status = status
        self.requests: List[tuple] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        query = json.loads(request.content)["requests"][0]
        extra = query["filters"][len(SCOPE) + len(" AND "):] or None
        pages = self.pages.get(extra, [])
        total = sum(len(p) for p in pages)

        if query["hitsPerPage"] == 0:
            key = ("count", extra)
            nb_hits, facets = self.counts.get(extra, (total, {}))
            body = {"hits": [], "nbHits": nb_hits, "facets": facets}
        else:
            page = query["page"]
            key = ("page", extra, page)
            hits = pages[page] if page < len(pages) else []
            body = {
                "hits": hits,
                "nbHits": self.page_nb_hits if self.page_nb_hits is not None else total,
                "page": page,
                "hitsPerPage": 2,
            }

        self.requests.append(key)
        if key == self.fail_on:
            return httpx.Response(self.status)
        return httpx.Response(200, json={"results": [body]})

    def page_requests(self):
        return [r[1:] for r in self.requests if r[0] == "page"]


def _fetcher(index, max_pages=None, max_hits_per_query=1000) -> AlgoliaCatalogFetcher:
    config = AlgoliaConfig(
        hits_per_page=2, retry_max=0, max_hits_per_query=max_hits_per_query
    )
    client = AlgoliaClient(config, httpx.AsyncClient(transport=httpx.MockTransport(index)))
    return AlgoliaCatalogFetcher(client, max_pages=max_pages)


async def _collect(fetcher, store="74"):
    return [batch async for batch in fetcher.fetch(API_KEY, APP_ID, store)]


def _ids(batches):
    return sorted(hit["productId"] for batch in batches for hit in batch)


class TestAlgoliaCatalogFetcher:
    """Pagination until exhaustion."""

    @pytest.mark.asyncio
    async def test_walks_pages_until_page_count(self):
        index = FakeIndex(
            {None: [[make_hit("1"), make_hit("2")], [make_hit("3"), make_hit("4")], [make_hit("5")]]}
        )

        batches = await _collect(_fetcher(index))

        assert [len(b) for b in batches] == [2, 2, 1]
        assert index.requests[0] == ("count", None)
        assert index.page_requests() == [(None, 0), (None, 1), (None, 2)]

    @pytest.mark.asyncio
    async def test_stops_on_empty_page(self):
        index = FakeIndex({None: [[make_hit("1"), make_hit("2")], []]}, page_nb_hits=100)

        batches = await _collect(_fetcher(index))

        assert len(batches) == 1
        assert index.page_requests() == [(None, 0), (None, 1)]

    @pytest.mark.asyncio
    async def test_empty_catalog_yields_nothing(self):
        index = FakeIndex({})

        assert await _collect(_fetcher(index)) == []
        assert index.requests == [("count", None)]

    @pytest.mark.asyncio
    async def test_page_cap_is_incomplete(self):
        pages = [[make_hit(str(i)), make_hit(f"{i}b")] for i in range(10)]
        index = FakeIndex({None: pages})
        received = []

        with pytest.raises(IncompleteCatalog) as exc_info:
            async for batch in _fetcher(index, max_pages=3).fetch(API_KEY, APP_ID, "74"):
                received.append(batch)

        assert len(received) == 3
        assert index.page_requests() == [(None, 0), (None, 1), (None, 2)]
        assert exc_info.value.batches_completed == 3
        assert "fetched 6 of 20" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_failure_reports_completed_batches(self):
        index = FakeIndex(
            {None: [[make_hit("1"), make_hit("2")], [make_hit("3"), make_hit("4")], [make_hit("5")]]},
            fail_on=("page", None, 2),
        )
        received = []

        with pytest.raises(NetworkError) as exc_info:
            async for batch in _fetcher(index).fetch(API_KEY, APP_ID, "74"):
                received.append(batch)

        assert exc_info.value.batches_completed == 2
        assert exc_info.value.status == 500
        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_auth_failure_while_planning(self):
        index = FakeIndex({}, fail_on=("count", None), status=401)

        with pytest.raises(AuthError) as exc_info:
            await _collect(_fetcher(index))

        assert exc_info.value.batches_completed == 0
        assert exc_info.value.status == 401

    @pytest.mark.asyncio
    async def test_new_call_restarts_from_scratch(self):
        index = FakeIndex({None: [[make_hit("1"), make_hit("2")], [make_hit("3")]]})
        fetcher = _fetcher(index)

        await _collect(fetcher)
        await _collect(fetcher)

        assert index.page_requests() == [(None, 0), (None, 1)] * 2
        assert index.requests.count(("count", None)) == 2


class TestFacetSplitting:
    """Catalogs above the per-query cap are split into leaf queries."""

    @pytest.mark.asyncio
    async def test_oversized_catalog_split_on_category(self):
        remainder = "NOT categories.lvl0:Dairy AND NOT categories.lvl0:Produce"
        index = FakeIndex(
            {
                "categories.lvl0:Dairy": [[make_hit("1"), make_hit("2")]],
                "categories.lvl0:Produce": [[make_hit("3"), make_hit("4")]],
                remainder: [[make_hit("5")]],
            },
            counts={
                None: (5, {"categories.lvl0": {"Dairy": 2, "Produce": 2}}),
            },
        )

        batches = await _collect(_fetcher(index, max_hits_per_query=3))

        assert _ids(batches) == ["1", "2", "3", "4", "5"]
        assert (None, 0) not in index.page_requests()
        assert ("count", remainder) in index.requests

    @pytest.mark.asyncio
    async def test_nested_split_and_quoted_values(self):
        bakery = 'categories.lvl0:"Bakery & Bread"'
        index = FakeIndex(
            {
                f"{bakery} AND isAvailable:true": [[make_hit("1"), make_hit("2")]],
                f"{bakery} AND isAvailable:false": [[make_hit("3"), make_hit("4")]],
                "categories.lvl0:Deli": [[make_hit("5")]],
            },
            counts={
                None: (5, {"categories.lvl0": {"Bakery & Bread": 4, "Deli": 1}}),
                bakery: (4, {"isAvailable": {"true": 2, "false": 2}}),
            },
        )

        batches = await _collect(_fetcher(index, max_hits_per_query=3))

        assert _ids(batches) == ["1", "2", "3", "4", "5"]

    @pytest.mark.asyncio
    async def test_short_leaf_fails_store(self):
        index = FakeIndex(
            {
                "categories.lvl0:Dairy": [[make_hit("1"), make_hit("2")]],
                "categories.lvl0:Produce": [[make_hit("3")]],
            },
            counts={
                None: (5, {"categories.lvl0": {"Dairy": 2, "Produce": 3}}),
                "categories.lvl0:Produce": (3, {}),
            },
        )

        with pytest.raises(IncompleteCatalog, match="fetched 3 of 5"):
            await _collect(_fetcher(index, max_hits_per_query=3))


class TestStaticCatalogFetcher:
    """Scripted test double."""

    @pytest.mark.asyncio
    async def test_attempts_consumed_in_order(self):
        fetcher = StaticCatalogFetcher(
            {"74": [AuthError("expired", status=401), [[make_hit("1")]]]}
        )

        with pytest.raises(AuthError):
            await _collect(fetcher)
        batches = await _collect(fetcher)
        again = await _collect(fetcher)

        assert len(batches) == 1
        assert again == batches
        assert len(fetcher.calls) == 3

    @pytest.mark.asyncio
    async def test_error_after_pages(self):
        fetcher = StaticCatalogFetcher(
            {"74": [([[make_hit("1")], [make_hit("2")]], NetworkError("reset"))]}
        )
        received = []
        with pytest.raises(NetworkError) as exc_info:
            async for batch in fetcher.fetch(API_KEY, APP_ID, "74"):
                received.append(batch)

        assert len(received) == 2
        assert exc_info.value.batches_completed == 2

    @pytest.mark.asyncio
    async def test_unknown_store_is_empty(self):
        assert await _collect(StaticCatalogFetcher({}), "1") == []
