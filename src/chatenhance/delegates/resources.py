"""Remote resource loading, memoized per URL.

Concurrent requests for the same URL share one in-flight fetch. A failed
fetch is evicted so a later call may try again.
"""

import asyncio
import logging
from typing import Optional

import httpx

from chatenhance.errors import LoadFailure

logger = logging.getLogger(__name__)


class ResourceLoader:
    """Fetches engine resources over HTTP with per-URL memoization."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        """Initialize loader.

        Args:
            client: HTTP client to use. One is created lazily when omitted.
            timeout: Request timeout in seconds for the created client.
        """
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout
        self._loads: dict[str, asyncio.Future] = {}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def load(self, url: str) -> bytes:
        """Return the body of ``url``, sharing in-flight and finished fetches.

        Raises:
            LoadFailure: If the URL is empty or the fetch failed.
        """
        if not url:
            raise LoadFailure("Missing resource URL")

        future = self._loads.get(url)
        if future is None:
            future = asyncio.ensure_future(self._fetch(url))
            self._loads[url] = future

        try:
            return await asyncio.shield(future)
        except LoadFailure:
            if self._loads.get(url) is future:
                del self._loads[url]
            raise

    async def _fetch(self, url: str) -> bytes:
        logger.debug("Fetching %s", url)
        try:
            response = await self._get_client().get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise LoadFailure(f"Failed to load {url}: {exc}", url=url) from exc
        return response.content

    def is_cached(self, url: str) -> bool:
        future = self._loads.get(url)
        return future is not None and future.done() and future.exception() is None

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
