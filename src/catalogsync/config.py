"""
Configuration for catalogsync.

Uses Pydantic for validation and environment loading.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


class AlgoliaConfig(BaseModel):
    """Remote search API settings."""

    index_name: str = Field(default="products", description="Algolia index name")
    hits_per_page: int = Field(default=1000, description="Records per page request")
    max_pages: int = Field(default=1000, description="Hard cap on pages per query")
    max_hits_per_query: int = Field(
        default=1000,
        description="Result cap per query; larger queries are split on facets",
    )
    max_count_queries: int = Field(
        default=500, description="Max count-only queries per store while planning"
    )
    fulfillment_type: str = Field(
        default="instore", description="fulfilmentType filter value"
    )

    # HTTP call settings
    request_timeout: float = Field(
        default=30.0, description="Page request timeout in seconds"
    )
    retry_max: int = Field(
        default=5, description="Max retries for 429 and transport failures"
    )
    retry_base_delay: float = Field(
        default=1.0, description="Base delay for exponential backoff"
    )
    retry_max_delay: float = Field(default=30.0, description="Backoff ceiling")


class RefreshConfig(BaseModel):
    """Refresh and pool settings."""

    concurrency: int = Field(default=100, description="Max stores refreshed at once")
    stale_threshold_hours: float = Field(
        default=24.0, description="Catalog age after which a refresh is due"
    )
    extraction_timeout: float = Field(
        default=60.0, description="Credential extraction timeout in seconds"
    )

    # SQLite write lock handling
    lock_retry_max: int = Field(
        default=5, description="Retries when the database is locked"
    )
    lock_retry_delay: float = Field(
        default=0.05, description="Base delay between lock retries"
    )


class SchedulerConfig(BaseModel):
    """Background refresh scheduler settings."""

    enabled: bool = Field(default=True)
    initial_delay_seconds: int = Field(
        default=60, description="Delay before the first stale check"
    )
    min_interval_seconds: int = Field(
        default=60, description="Floor for the computed check interval"
    )


class SyncConfig(BaseSettings):
    """Master configuration for catalogsync."""

    model_config = ConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    log_level: str = Field(default="INFO")
    database_path: str = Field(
        default="data/catalog.db", description="SQLite database file"
    )
    homepage_url: str = Field(
        default="https://www.wegmans.com",
        description="Page the API credentials are extracted from",
    )
    stores_api_url: str = Field(
        default="https://www.wegmans.com/api/stores",
        description="Store directory endpoint",
    )
    default_store: Optional[str] = Field(
        default=None, description="Store activated when none is selected"
    )

    algolia: AlgoliaConfig = Field(default_factory=AlgoliaConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            database_path=os.getenv("CATALOG_DATABASE_PATH", "data/catalog.db"),
            homepage_url=os.getenv("CATALOG_HOMEPAGE_URL", "https://www.wegmans.com"),
            stores_api_url=os.getenv(
                "CATALOG_STORES_API_URL", "https://www.wegmans.com/api/stores"
            ),
            default_store=os.getenv("CATALOG_DEFAULT_STORE") or None,
            algolia=AlgoliaConfig(
                index_name=os.getenv("ALGOLIA_INDEX_NAME", "products"),
                hits_per_page=int(os.getenv("ALGOLIA_HITS_PER_PAGE", "1000")),
                max_pages=int(os.getenv("ALGOLIA_MAX_PAGES", "1000")),
                max_hits_per_query=int(
                    os.getenv("ALGOLIA_MAX_HITS_PER_QUERY", "1000")
                ),
                max_count_queries=int(os.getenv("ALGOLIA_MAX_COUNT_QUERIES", "500")),
                fulfillment_type=os.getenv("ALGOLIA_FULFILLMENT_TYPE", "instore"),
                request_timeout=float(os.getenv("ALGOLIA_REQUEST_TIMEOUT", "30.0")),
                retry_max=int(os.getenv("ALGOLIA_RETRY_MAX", "5")),
                retry_base_delay=float(os.getenv("ALGOLIA_RETRY_BASE_DELAY", "1.0")),
                retry_max_delay=float(os.getenv("ALGOLIA_RETRY_MAX_DELAY", "30.0")),
            ),
            refresh=RefreshConfig(
                concurrency=int(os.getenv("REFRESH_CONCURRENCY", "100")),
                stale_threshold_hours=float(
                    os.getenv("REFRESH_STALE_THRESHOLD_HOURS", "24")
                ),
                extraction_timeout=float(
                    os.getenv("REFRESH_EXTRACTION_TIMEOUT", "60.0")
                ),
                lock_retry_max=int(os.getenv("REFRESH_LOCK_RETRY_MAX", "5")),
                lock_retry_delay=float(os.getenv("REFRESH_LOCK_RETRY_DELAY", "0.05")),
            ),
            scheduler=SchedulerConfig(
                enabled=os.getenv("SCHEDULER_ENABLED", "true").lower() == "true",
                initial_delay_seconds=int(
                    os.getenv("SCHEDULER_INITIAL_DELAY_SEC", "60")
                ),
                min_interval_seconds=int(os.getenv("SCHEDULER_MIN_INTERVAL_SEC", "60")),
            ),
        )


@lru_cache(maxsize=1)
def get_config() -> SyncConfig:
    """Process-wide config loaded from the environment."""
    return SyncConfig.from_env()
