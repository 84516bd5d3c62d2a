"""Shared fixtures for catalogsync tests."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from catalogsync.algolia.credentials import CredentialStore
from catalogsync.algolia.extractor import KeyExtractionResult
from catalogsync.db.connection import Database

API_KEY = "0123456789abcdef0123456789abcdef"
APP_ID = "QGPPR19V8V"


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "catalog.db", lock_retry_delay=0.0)
    yield database
    database.close()


@pytest.fixture
def credentials(db):
    return CredentialStore(db)


class FakeExtractor:
    """Scripted extraction collaborator; counts calls."""

    def __init__(self, results: Optional[List[KeyExtractionResult]] = None):
        self.results = list(results or [])
        self.calls = 0

    async def __call__(self) -> KeyExtractionResult:
        self.calls += 1
        if self.results:
            return self.results.pop(0)
        return KeyExtractionResult(
            success=True, api_key=f"{self.calls:032x}", app_id=APP_ID
        )


@pytest.fixture
def extractor():
    return FakeExtractor()


def make_hit(
    product_id: str,
    name: Optional[str] = None,
    store_number: str = "74",
    category: Optional[str] = None,
    filter_tags: Optional[List[str]] = None,
    popular_tags: Optional[List[str]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Minimal Algolia hit in the upstream shape."""
    hit: Dict[str, Any] = {
        "objectID": f"{store_number}-{product_id}",
        "productId": product_id,
        "productName": name or f"Product {product_id}",
        "storeNumber": store_number,
        "isAvailable": True,
        "isSoldAtStore": True,
        "price_inStore": {"amount": 2.99, "unitPrice": "$2.99/ea"},
    }
    if category:
        segments = category.split(" > ")
        hit["categories"] = {
            f"lvl{i}": " > ".join(segments[: i + 1]) for i in range(len(segments))
        }
    if filter_tags is not None:
        hit["filterTags"] = filter_tags
    if popular_tags is not None:
        hit["popularTags"] = popular_tags
    hit.update(extra)
    return hit
