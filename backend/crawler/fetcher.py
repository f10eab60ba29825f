"""HTTP fetcher for the page under analysis."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import urlsplit

import httpx

from backend.config import settings
from backend.crawler.errors import FetchError, FetchErrorKind, describe
from backend.crawler.models import RawPage

logger = logging.getLogger(__name__)


def default_headers() -> dict[str, str]:
    return {"User-Agent": settings.user_agent}


def new_client() -> httpx.AsyncClient:
    """Return an ``AsyncClient`` configured for crawling.

    Redirects are followed so both the page fetch and link probes see the
    final response.
    """
    return httpx.AsyncClient(headers=default_headers(), follow_redirects=True)


def _validate_address(url: str) -> None:
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise FetchError(FetchErrorKind.INVALID_ADDRESS, url, f"Invalid URL {url!r}: {exc}") from exc
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise FetchError(
            FetchErrorKind.INVALID_ADDRESS, url, f"Invalid URL {url!r}: expected an http(s) address"
        )


async def fetch_page(
    client: httpx.AsyncClient,
    url: str,
    timeout: Optional[float] = None,
) -> RawPage:
    """Fetch *url* and return a :class:`RawPage`.

    *timeout* bounds the whole exchange (connect, headers and body).  A 4xx
    or 5xx response is returned like any other: the page is still analysed.

    Raises:
        FetchError: On an invalid address, a transport failure, or when the
            timeout elapses.
    """
    _validate_address(url)
    timeout = settings.fetch_timeout if timeout is None else timeout

    try:
        response = await asyncio.wait_for(client.get(url, timeout=timeout), timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        raise FetchError(
            FetchErrorKind.TIMEOUT, url, f"Timed out fetching {url} after {timeout:g}s"
        ) from exc
    except (httpx.InvalidURL, ValueError) as exc:
        # ValueError: the host cannot be encoded (bad IDNA labels).
        raise FetchError(FetchErrorKind.INVALID_ADDRESS, url, f"Invalid URL {url!r}: {exc}") from exc
    except httpx.HTTPError as exc:
        raise FetchError(
            FetchErrorKind.NETWORK, url, f"Failed to fetch {url}: {describe(exc)}"
        ) from exc

    logger.debug("Fetched %s: HTTP %d, %d bytes", url, response.status_code, len(response.content))

    return RawPage(
        url=str(response.url),
        content=response.content,
        content_type=response.headers.get("content-type", ""),
        status_code=response.status_code,
    )
