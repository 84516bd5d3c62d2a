"""catalogsync command line.

Refresh one or more store catalogs:
    python -m catalogsync refresh 74 59 --force

Show catalog freshness:
    python -m catalogsync status 74

Sync and list the store directory:
    python -m catalogsync stores --state NY

Select the active store (refreshes if needed):
    python -m catalogsync activate 74

Run the background stale-catalog scheduler:
    python -m catalogsync schedule
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import httpx
from dotenv import load_dotenv

from .catalog.orchestrator import create_orchestrator
from .catalog.pool import WorkerPool
from .catalog.progress import Progress
from .config import SyncConfig
from .db.connection import Database
from .db.settings import get_active_store
from .db.status import get_catalog_status
from .errors import CatalogSyncError
from .scheduler import CatalogScheduler, run_scheduler
from .stores.directory import refresh_store_directory

logger = logging.getLogger("catalogsync")


def setup_logging(level: str = "INFO"):
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _print_progress(progress: Progress):
    print(f"[{progress.phase.value}] {progress.message}", file=sys.stderr)


def _open_db(config: SyncConfig) -> Database:
    return Database(
        config.database_path,
        lock_retry_max=config.refresh.lock_retry_max,
        lock_retry_delay=config.refresh.lock_retry_delay,
    )


async def _refresh(config: SyncConfig, args) -> int:
    db = _open_db(config)
    try:
        return await _run_refresh(config, db, args)
    finally:
        db.close()


async def _run_refresh(config: SyncConfig, db: Database, args) -> int:
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(config.algolia.request_timeout)
    ) as http:
        orchestrator = create_orchestrator(config, db, http)
        stores = args.stores or [get_active_store(db.connection) or config.default_store]
        stores = [s for s in stores if s]
        if not stores:
            logger.error("No store given and no active store set")
            return 2

        progress = None if args.quiet else _print_progress
        if len(stores) == 1 and not args.force:
            result = await orchestrator.refresh_if_needed(stores[0], on_progress=progress)
            if result is None:
                print(json.dumps(orchestrator.status(stores[0]).to_dict(), indent=2))
                return 0
            print(json.dumps(result.to_dict(), indent=2))
            return 0 if result.success else 1

        pool = WorkerPool(orchestrator, args.concurrency or config.refresh.concurrency)
        summary = await pool.run(stores, on_progress=progress)
        print(json.dumps(summary.to_dict(), indent=2))
    return 0 if not summary.failed else 1


async def _activate(config: SyncConfig, args) -> int:
    db = _open_db(config)
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(config.algolia.request_timeout)
    ) as http:
        orchestrator = create_orchestrator(config, db, http)
        result = await orchestrator.activate(
            args.store, force=args.force, on_progress=_print_progress
        )
    if result is None:
        print(json.dumps(orchestrator.status(args.store).to_dict(), indent=2))
        return 0
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def _status(config: SyncConfig, args) -> int:
    db = _open_db(config)
    store = args.store or get_active_store(db.connection)
    if not store:
        logger.error("No store given and no active store set")
        return 2
    reader = db.reader()
    try:
        status = get_catalog_status(reader, store)
    finally:
        reader.close()
    print(json.dumps(status.to_dict(), indent=2))
    return 0


async def _stores(config: SyncConfig, args) -> int:
    db = _open_db(config)
    async with httpx.AsyncClient(timeout=httpx.Timeout(30.0)) as http:
        result = await refresh_store_directory(
            db, http, config.stores_api_url, force=args.force
        )
    stores = result.stores
    if args.state:
        stores = [s for s in stores if (s.state or "").upper() == args.state.upper()]
    print(json.dumps([s.to_dict() for s in stores], indent=2))
    if result.error:
        logger.warning(f"Served cached store list: {result.error}")
    return 0


async def _schedule(config: SyncConfig, args) -> int:
    db = _open_db(config)
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(config.algolia.request_timeout)
    ) as http:
        orchestrator = create_orchestrator(config, db, http)
        await run_scheduler(CatalogScheduler(db, orchestrator, config))
    return 0


def main():
    """CLI entry point."""
    load_dotenv()
    config = SyncConfig.from_env()

    parser = argparse.ArgumentParser(
        description="catalogsync - per-store catalog replica for Algolia search"
    )
    parser.add_argument(
        "--log-level",
        default=config.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level",
    )
    parser.add_argument("--db", default=None, help="SQLite database path")
    sub = parser.add_subparsers(dest="command", required=True)

    p_refresh = sub.add_parser("refresh", help="Refresh store catalogs")
    p_refresh.add_argument("stores", nargs="*", help="Store numbers (default: active)")
    p_refresh.add_argument("--force", action="store_true", help="Ignore freshness")
    p_refresh.add_argument("--concurrency", type=int, default=None)
    p_refresh.add_argument("--quiet", "-q", action="store_true")

    p_status = sub.add_parser("status", help="Show catalog freshness")
    p_status.add_argument("store", nargs="?", default=None)

    p_stores = sub.add_parser("stores", help="Sync and list the store directory")
    p_stores.add_argument("--state", default=None, help="Filter by state (e.g. NY)")
    p_stores.add_argument("--force", action="store_true")

    p_activate = sub.add_parser("activate", help="Select the active store")
    p_activate.add_argument("store")
    p_activate.add_argument("--force", action="store_true")

    sub.add_parser("schedule", help="Run the background refresh scheduler")

    args = parser.parse_args()
    setup_logging(args.log_level)
    if args.db:
        config.database_path = args.db

    try:
        if args.command == "status":
            code = _status(config, args)
        elif args.command == "refresh":
            code = asyncio.run(_refresh(config, args))
        elif args.command == "stores":
            code = asyncio.run(_stores(config, args))
        elif args.command == "activate":
            code = asyncio.run(_activate(config, args))
        else:
            code = asyncio.run(_schedule(config, args))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        code = 0
    except CatalogSyncError as e:
        logger.error(str(e))
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
