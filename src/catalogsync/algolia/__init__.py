"""Algolia search API access: credentials, page client, key extraction."""

from .client import AlgoliaClient, SearchPage
from .credentials import CredentialStore, Credentials, is_auth_error
from .extractor import KeyExtractionResult, extract_algolia_key

__all__ = [
    "AlgoliaClient",
    "SearchPage",
    "CredentialStore",
    "Credentials",
    "is_auth_error",
    "KeyExtractionResult",
    "extract_algolia_key",
]
