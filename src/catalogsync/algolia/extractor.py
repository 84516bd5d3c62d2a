"""
Algolia key extraction from the retailer's web bundle.

The storefront is a Next.js app whose client chunks build the search client
from an object literal like ``{apiKey:n,appId:r}`` where ``n`` and ``r`` are
bound to string literals earlier in the same chunk. We fetch the homepage,
collect the chunk URLs, download them concurrently and resolve those
identifiers with regular expressions.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import urljoin

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

API_KEY_PATTERN = re.compile(r"^[0-9a-f]{32}$")
APP_ID_PATTERN = re.compile(r"^[A-Z0-9]{5,20}$")

_CHUNK_RE = re.compile(r'<script[^>]+src="(/_next/static/chunks/[^"]+)"')
_IDENT = r"[A-Za-z_$][\w$]*"
_STRING = r"\"([^\"\\]*)\"|'([^'\\]*)'"
_OBJECT_RE = re.compile(
    r"\{[^{}]*?\bapiKey\s*:\s*(?P<key>" + _IDENT + r"|\"[^\"]*\")"
    r"\s*,\s*appId\s*:\s*(?P<app>" + _IDENT + r"|\"[^\"]*\")"
)


@dataclass
class KeyExtractionResult:
    success: bool
    api_key: Optional[str] = None
    app_id: Optional[str] = None
    store_number: Optional[str] = None
    error: Optional[str] = None


def parse_chunk_urls(html: str, base_url: str) -> List[str]:
    """Absolute URLs of every Next.js chunk script on the page."""
    return [urljoin(base_url, path) for path in _CHUNK_RE.findall(html)]


def _resolve(source: str, token: str, before: int) -> Optional[str]:
    """Resolve ``token`` to a string literal.

    Quoted tokens are returned as-is. Identifiers resolve to the closest
    ``name="..."`` binding preceding position ``before``.
    """
    if token.startswith('"'):
        return token.strip('"')

    binding = re.compile(
        r"(?<![\w$.])" + re.escape(token) + r"\s*=\s*(?:" + _STRING + r")"
    )
    value = None
    for match in binding.finditer(source, 0, before):
        value = match.group(1) if match.group(1) is not None else match.group(2)
    return value


def extract_credentials_from_js(source: str) -> Optional[Tuple[str, str]]:
    """Find a valid (api_key, app_id) pair in a JS chunk."""
    for match in _OBJECT_RE.finditer(source):
        api_key = _resolve(source, match.group("key"), match.start())
        app_id = _resolve(source, match.group("app"), match.start())
        if (
            api_key
            and app_id
            and API_KEY_PATTERN.match(api_key)
            and APP_ID_PATTERN.match(app_id)
        ):
            return api_key, app_id
    return None


async def _extract(client: httpx.AsyncClient, homepage_url: str) -> KeyExtractionResult:
    response = await client.get(homepage_url)
    if response.status_code >= 400:
        return KeyExtractionResult(
            success=False,
            error=f"Homepage fetch failed with status {response.status_code}",
        )

    chunk_urls = parse_chunk_urls(response.text, homepage_url)
    if not chunk_urls:
        return KeyExtractionResult(
            success=False, error="No script chunks found on homepage"
        )

    async def fetch_chunk(url: str) -> Optional[str]:
        try:
            chunk = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"Chunk fetch failed for {url}: {e}")
            return None
        if chunk.status_code >= 400 or "apiKey:" not in chunk.text:
            return None
        return chunk.text

    sources = await asyncio.gather(*(fetch_chunk(url) for url in chunk_urls))
    for source in sources:
        if not source:
            continue
        found = extract_credentials_from_js(source)
        if found:
            api_key, app_id = found
            logger.info(f"Extracted Algolia credentials for app {app_id}")
            return KeyExtractionResult(success=True, api_key=api_key, app_id=app_id)

    return KeyExtractionResult(
        success=False,
        error=f"No Algolia credentials found in {len(chunk_urls)} chunks",
    )


async def extract_algolia_key(
    homepage_url: str = "https://www.wegmans.com",
    timeout: float = 60.0,
    http_client: Optional[httpx.AsyncClient] = None,
) -> KeyExtractionResult:
    """Extract the public search key. Never raises; failures are reported."""
    client = http_client or httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
        timeout=httpx.Timeout(timeout),
    )
    try:
        return await asyncio.wait_for(_extract(client, homepage_url), timeout)
    except asyncio.TimeoutError:
        return KeyExtractionResult(
            success=False, error=f"Extraction timed out after {timeout:.0f}s"
        )
    except httpx.HTTPError as e:
        return KeyExtractionResult(success=False, error=f"Extraction failed: {e}")
    finally:
        if http_client is None:
            await client.aclose()
