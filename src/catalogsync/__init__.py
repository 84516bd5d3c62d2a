"""
catalogsync - local SQLite replica of per-store Algolia product catalogs.

Provides:
- CredentialStore: API key lifecycle with extraction fallback
- AlgoliaCatalogFetcher: facet-split, paginated per-store fetch
- RefreshOrchestrator: fetch-then-commit with one auth retry
- WorkerPool: bounded-concurrency multi-store refresh
- OntologyBuilder: category tree and tag counts

Usage:
    from catalogsync import Database, SyncConfig, WorkerPool, create_orchestrator

    config = SyncConfig.from_env()
    db = Database(config.database_path)
    orchestrator = create_orchestrator(config, db)

    summary = await WorkerPool(orchestrator, concurrency=10).run(["74", "59"])
"""

__version__ = "0.1.0"

from .algolia.credentials import CredentialStore, Credentials
from .catalog.fetcher import AlgoliaCatalogFetcher, CatalogFetcher, StaticCatalogFetcher
from .catalog.ontology import OntologyBuilder
from .catalog.planner import QueryPlanner
from .catalog.orchestrator import RefreshOrchestrator, RefreshResult, create_orchestrator
from .catalog.pool import PoolSummary, WorkerPool
from .catalog.progress import Phase, Progress, ProgressReporter, ProgressStream
from .config import SyncConfig, get_config
from .db.connection import Database
from .db.status import CatalogStatus, get_catalog_status, is_stale
from .errors import (
    AuthError,
    CatalogSyncError,
    CommitFailed,
    ExtractionFailed,
    IncompleteCatalog,
    NetworkError,
)

__all__ = [
    "__version__",
    # Engine
    "CredentialStore",
    "Credentials",
    "CatalogFetcher",
    "AlgoliaCatalogFetcher",
    "StaticCatalogFetcher",
    "RefreshOrchestrator",
    "RefreshResult",
    "create_orchestrator",
    "WorkerPool",
    "PoolSummary",
    "OntologyBuilder",
    "QueryPlanner",
    # Progress
    "Phase",
    "Progress",
    "ProgressReporter",
    "ProgressStream",
    # Persistence
    "Database",
    "CatalogStatus",
    "get_catalog_status",
    "is_stale",
    # Config
    "SyncConfig",
    "get_config",
    # Errors
    "CatalogSyncError",
    "ExtractionFailed",
    "AuthError",
    "NetworkError",
    "IncompleteCatalog",
    "CommitFailed",
]
