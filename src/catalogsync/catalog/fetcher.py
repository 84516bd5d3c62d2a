"""
Paginated catalog fetchers.

A fetcher turns (api_key, app_id, store_number) into an async sequence of
batches, one per upstream page. Batches are never empty. Each call starts
from scratch; a failing request raises with ``batches_completed`` set so
callers know how far the run got.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set, Union

from ..algolia.client import AlgoliaClient
from ..errors import IncompleteCatalog, UpstreamError
from .planner import QueryPlanner

logger = logging.getLogger(__name__)

Batch = List[Dict[str, Any]]


class CatalogFetcher(ABC):
    """Contract for per-store catalog retrieval."""

    @abstractmethod
    def fetch(
        self, api_key: str, app_id: str, store_number: str
    ) -> AsyncIterator[Batch]:
        """Yield non-empty batches until the store's catalog is exhausted."""


class AlgoliaCatalogFetcher(CatalogFetcher):
    """Plans facet-split queries for one store, then walks each one's pages.

    Raises IncompleteCatalog when fewer distinct records arrive than the
    store's unsplit query reported, so a capped result is never mistaken for
    the whole catalog.
    """

    def __init__(
        self,
        client: AlgoliaClient,
        max_pages: Optional[int] = None,
        planner: Optional[QueryPlanner] = None,
    ):
        self.client = client
        self.max_pages = max_pages or client.config.max_pages
        self.planner = planner or QueryPlanner(
            client,
            max_hits=client.config.max_hits_per_query,
            max_count_queries=client.config.max_count_queries,
        )

    async def fetch(
        self, api_key: str, app_id: str, store_number: str
    ) -> AsyncIterator[Batch]:
        try:
            plan = await self.planner.plan(api_key, app_id, store_number)
        except UpstreamError as e:
            e.batches_completed = 0
            logger.warning(f"Store {store_number}: planning failed: {e}")
            raise

        batches = 0
        seen: Set[str] = set()
        for task in plan.tasks:
            page = 0
            while page < self.max_pages:
                try:
                    result = await self.client.search_page(
                        api_key, app_id, store_number, page, filters=task.filter
                    )
                except UpstreamError as e:
                    e.batches_completed = batches
                    logger.warning(
                        f"Store {store_number}: {task.name} page {page} failed "
                        f"after {batches} batches: {e}"
                    )
                    raise

                if not result.hits:
                    break

                batches += 1
                for hit in result.hits:
                    seen.add(_hit_key(hit, len(seen)))
                yield result.hits

                page += 1
                if page >= result.total_pages:
                    break
            else:
                logger.warning(
                    f"Store {store_number}: {task.name} stopped at page cap "
                    f"{self.max_pages}"
                )

        if len(seen) < plan.expected_hits:
            raise IncompleteCatalog(
                f"Store {store_number}: fetched {len(seen)} of "
                f"{plan.expected_hits} records",
                batches_completed=batches,
            )


def _hit_key(hit: Dict[str, Any], position: int) -> str:
    object_id = hit.get("objectID")
    return str(object_id) if object_id not in (None, "") else f"#{position}"


# A scripted attempt: list of pages, or an exception raised after the pages
Attempt = Union[Sequence[Batch], BaseException]


class StaticCatalogFetcher(CatalogFetcher):
    """In-memory fetcher with scripted per-store responses.

    ``responses`` maps a store number to a list of attempts consumed one per
    ``fetch`` call (the last attempt repeats). An attempt is either a list of
    pages or an exception. An exception raised after some pages can be given
    as ``(pages, exc)``.

    Tracks call counts and peak concurrency for assertions.
    """

    def __init__(
        self,
        responses: Dict[str, List[Any]],
        delay: float = 0.0,
    ):
        self.responses = {str(k): list(v) for k, v in responses.items()}
        self.delay = delay
        self.calls: List[Dict[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _next_attempt(self, store_number: str) -> Any:
        attempts = self.responses.get(store_number)
        if not attempts:
            return []
        if len(attempts) > 1:
            return attempts.pop(0)
        return attempts[0]

    async def fetch(
        self, api_key: str, app_id: str, store_number: str
    ) -> AsyncIterator[Batch]:
        self.calls.append(
            {"api_key": api_key, "app_id": app_id, "store_number": store_number}
        )
        attempt = self._next_attempt(store_number)

        pages: Sequence[Batch] = []
        error: Optional[BaseException] = None
        if isinstance(attempt, BaseException):
            error = attempt
        elif isinstance(attempt, tuple):
            pages, error = attempt
        else:
            pages = attempt

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            batches = 0
            for page in pages:
                await asyncio.sleep(self.delay)
                if not page:
                    return
                batches += 1
                yield list(page)
            await asyncio.sleep(self.delay)
            if error is not None:
                if isinstance(error, UpstreamError):
                    error.batches_completed = batches
                raise error
        finally:
            self.in_flight -= 1
