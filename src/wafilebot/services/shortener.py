"""URL shortening via the TinyURL create API.

``shorten()`` never raises: any failure returns the input URL unchanged.
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

_TIMEOUT = 10.0


class UrlShortener:
    """Thin async client for ``api-create.php``-style shorteners."""

    def __init__(
        self,
        api_url: str = "https://tinyurl.com/api-create.php",
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url
        self._client = client

    async def shorten(self, url: str) -> str:
        try:
            if self._client is not None:
                resp = await self._client.get(self.api_url, params={"url": url})
            else:
                async with httpx.AsyncClient(timeout=_TIMEOUT) as client:
                    resp = await client.get(self.api_url, params={"url": url})
            resp.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("URL shortening failed for %s: %s", url, e)
            return url
        short = resp.text.strip()
        if not short.startswith(("http://", "https://")):
            logger.warning("Shortener returned an unexpected body for %s", url)
            return url
        return short
