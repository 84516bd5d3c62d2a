"""
Algolia credential storage.

Credentials live in the ``api_keys`` table. Every extraction inserts a new row;
the newest row is the current credential. ``invalidate`` deletes rows so the
next ``ensure`` call extracts again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..catalog.progress import Phase, Progress, ProgressReporter
from ..db.connection import Database
from ..db.status import format_timestamp, utc_now
from ..errors import ExtractionFailed

logger = logging.getLogger(__name__)

AUTH_ERROR_STATUSES = frozenset({401, 403})


def is_auth_error(status: Optional[int]) -> bool:
    """401/403 mean the API key was rejected."""
    return status in AUTH_ERROR_STATUSES


@dataclass
class Credentials:
    api_key: str
    app_id: str
    extracted_at: str
    expires_at: Optional[str] = None


# async () -> KeyExtractionResult (success, api_key, app_id, error)
ExtractFn = Callable[[], Awaitable[Any]]


class CredentialStore:
    """Owns the current API credential for a database."""

    def __init__(self, db: Database):
        self.db = db
        self._lock = asyncio.Lock()

    def get(self) -> Optional[Credentials]:
        with self.db.locked() as conn:
            row = conn.execute(
                """
                SELECT key, app_id, extracted_at, expires_at
                FROM api_keys
                ORDER BY id DESC
                LIMIT 1
                """
            ).fetchone()
        if not row:
            return None
        return Credentials(
            api_key=row["key"],
            app_id=row["app_id"],
            extracted_at=row["extracted_at"],
            expires_at=row["expires_at"],
        )

    def store(
        self, api_key: str, app_id: str, expires_at: Optional[str] = None
    ) -> Credentials:
        """Persist a new current credential."""
        credentials = Credentials(
            api_key=api_key,
            app_id=app_id,
            extracted_at=format_timestamp(utc_now()),
            expires_at=expires_at,
        )
        with self.db.locked() as conn:
            conn.execute(
                "INSERT INTO api_keys (key, app_id, extracted_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (
                    credentials.api_key,
                    credentials.app_id,
                    credentials.extracted_at,
                    credentials.expires_at,
                ),
            )
        return credentials

    async def ensure(
        self,
        extract_fn: ExtractFn,
        reporter: Optional[ProgressReporter] = None,
    ) -> Credentials:
        """Return the current credential, extracting one if none is stored.

        Concurrent callers share a single extraction.
        """
        current = await asyncio.to_thread(self.get)
        if current is not None:
            return current

        async with self._lock:
            current = await asyncio.to_thread(self.get)
            if current is not None:
                return current

            if reporter:
                reporter.emit(
                    Progress(Phase.PLANNING, 0, 0, "Extracting API credentials...")
                )
            logger.info("No stored API credentials, extracting")
            result = await extract_fn()
            if not result.success or not result.api_key or not result.app_id:
                raise ExtractionFailed(
                    result.error or "Extraction returned no API key"
                )

            credentials = await asyncio.to_thread(
                self.store, result.api_key, result.app_id
            )
            if reporter:
                reporter.emit(
                    Progress(
                        Phase.PLANNING, 0, 0, "API credentials extracted successfully"
                    )
                )
            logger.info(f"Stored API credentials for app {credentials.app_id}")
            return credentials

    def invalidate(self, credentials: Optional[Credentials] = None) -> bool:
        """Clear stored credentials.

        When ``credentials`` is given, only clear if it is still the current
        one, so a sibling refresh that already re-extracted is not undone.
        Returns True when rows were deleted.
        """
        with self.db.locked() as conn:
            if credentials is not None:
                current = self.get()
                if current is None or current.api_key != credentials.api_key:
                    return False
            cur = conn.execute("DELETE FROM api_keys")
        logger.info("Invalidated stored API credentials")
        return cur.rowcount > 0
