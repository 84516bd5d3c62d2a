"""
Algolia multi-query client.

One request per catalog page or count-only planning query. 401/403 become
AuthError immediately; 429 and transport failures (timeouts, refused
connections) are retried with exponential backoff before surfacing as
NetworkError; any other non-2xx is a NetworkError straight away.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..config import AlgoliaConfig
from ..errors import AuthError, NetworkError
from .credentials import is_auth_error
from .schemas import SearchResponse

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429})


@dataclass
class SearchPage:
    """One page of hits plus pagination metadata."""

    hits: List[Dict[str, Any]] = field(default_factory=list)
    total_hits: int = 0
    page: int = 0
    total_pages: int = 0
    facets: Dict[str, Dict[str, int]] = field(default_factory=dict)


def algolia_url(app_id: str) -> str:
    return f"https://{app_id.lower()}-dsn.algolia.net/1/indexes/*/queries"


def store_filter(store_number: str, fulfillment_type: Optional[str] = "instore") -> str:
    """Filter expression scoping a query to one store's shelf."""
    parts = [f"storeNumber:{store_number}"]
    if fulfillment_type:
        parts.append(f"fulfilmentType:{fulfillment_type}")
    parts.extend(["isSoldAtStore:true", "excludeFromWeb:false"])
    return " AND ".join(parts)


class AlgoliaClient:
    """Async client for the Algolia queries endpoint."""

    def __init__(
        self,
        config: Optional[AlgoliaConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or AlgoliaConfig()
        self._http = http_client
        self._owns_http = http_client is None

    def _get_http(self) -> httpx.AsyncClient:
        """Lazy HTTP client."""
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.request_timeout)
            )
            self._owns_http = True
        return self._http

    def build_request(
        self,
        store_number: str,
        page: int = 0,
        filters: Optional[str] = None,
        hits_per_page: Optional[int] = None,
        facets: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Multi-query body; ``filters`` narrows the store scope further."""
        scope = store_filter(store_number, self.config.fulfillment_type)
        query: Dict[str, Any] = {
            "indexName": self.config.index_name,
            "query": "",
            "filters": f"{scope} AND {filters}" if filters else scope,
            "hitsPerPage": (
                self.config.hits_per_page if hits_per_page is None else hits_per_page
            ),
            "page": page,
        }
        if facets is not None:
            query["facets"] = facets
        return {"requests": [query]}

    def _backoff(self, attempt: int) -> float:
        return min(
            self.config.retry_base_delay * (2**attempt),
            self.config.retry_max_delay,
        )

    async def search_page(
        self,
        api_key: str,
        app_id: str,
        store_number: str,
        page: int = 0,
        filters: Optional[str] = None,
        hits_per_page: Optional[int] = None,
        facets: Optional[List[str]] = None,
    ) -> SearchPage:
        """Fetch one page of a store's catalog.

        ``hits_per_page=0`` with ``facets=["*"]`` is a count-only query: no hits,
        just the match count and per-facet value counts.
        """
        body = self.build_request(store_number, page, filters, hits_per_page, facets)
        headers = {
            "X-Algolia-API-Key": api_key,
            "X-Algolia-Application-Id": app_id,
            "Content-Type": "application/json",
        }
        url = algolia_url(app_id)
        http = self._get_http()

        attempt = 0
        while True:
            try:
                response = await http.post(url, json=body, headers=headers)
            except httpx.TransportError as e:
                if attempt < self.config.retry_max:
                    delay = self._backoff(attempt)
                    attempt += 1
                    logger.warning(
                        f"Algolia request failed for store {store_number} page {page}"
                        f" ({type(e).__name__}), retry {attempt} in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise NetworkError(
                    f"Algolia request failed: {type(e).__name__}: {e}"
                ) from e

            status = response.status_code
            if is_auth_error(status):
                raise AuthError(
                    f"Algolia error: {status} {response.reason_phrase}", status=status
                )
            if status in RETRYABLE_STATUSES and attempt < self.config.retry_max:
                delay = self._backoff(attempt)
                attempt += 1
                logger.warning(
                    f"Algolia rate limited for store {store_number} page {page},"
                    f" retry {attempt} in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                continue
            if status >= 400:
                raise NetworkError(
                    f"Algolia error: {status} {response.reason_phrase}", status=status
                )
            return self._parse(response, page)

    def _parse(self, response: httpx.Response, page: int) -> SearchPage:
        try:
            parsed = SearchResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise NetworkError(
                f"Malformed Algolia response: {e}", status=response.status_code
            ) from e

        if not parsed.results:
            return SearchPage(page=page)

        result = parsed.results[0]
        per_page = result.hits_per_page or self.config.hits_per_page
        if result.nb_pages is not None:
            total_pages = result.nb_pages
        else:
            total_pages = math.ceil(result.nb_hits / per_page) if per_page else 0
        return SearchPage(
            hits=result.hits,
            total_hits=result.nb_hits,
            page=result.page,
            total_pages=total_pages,
            facets=result.facets,
        )

    async def close(self):
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
