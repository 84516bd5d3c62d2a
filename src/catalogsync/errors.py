"""
Error taxonomy for catalog synchronization.

Only AuthError is recovered inside a refresh (one credential re-extraction and
retry). Everything else is terminal for the store and is turned into a
structured RefreshResult by the orchestrator.
"""

from __future__ import annotations

from typing import Optional


class CatalogSyncError(Exception):
    """Base class for all catalog sync failures."""

    kind = "error"


class ExtractionFailed(CatalogSyncError):
    """No usable API credential could be obtained."""

    kind = "extraction_failed"


class UpstreamError(CatalogSyncError):
    """Failure reported by (or while talking to) the remote search API.

    ``batches_completed`` is filled in by the fetcher with the number of full
    batches it yielded before the failing page.
    """

    kind = "upstream"

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        batches_completed: int = 0,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.batches_completed = batches_completed


class AuthError(UpstreamError):
    """401/403 from the remote API."""

    kind = "auth"


class NetworkError(UpstreamError):
    """Timeout, connection failure or non-auth HTTP error."""

    kind = "network"


class IncompleteCatalog(UpstreamError):
    """The fetched records fall short of the count the API reported."""

    kind = "incomplete"


class CommitFailed(CatalogSyncError):
    """The local transaction could not be applied."""

    kind = "commit_failed"
