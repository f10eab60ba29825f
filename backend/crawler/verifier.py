"""Link classification and concurrent reachability checks.

Every valid link on the page is probed with its own GET request.  Probes run
as asyncio tasks, with the number in flight capped by a semaphore so that a
page with thousands of anchors does not open thousands of sockets at once.

A failed probe is never fatal: it becomes a :class:`BrokenLink` entry.  The
optional *budget* is the umbrella deadline for the whole verification; when
it expires the outstanding probes are cancelled and the report comes back
with ``complete=False``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from backend.config import settings
from backend.crawler.errors import ProbeError, ProbeErrorKind, describe
from backend.crawler.models import BrokenLink, LinkClassification, LinkReport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify_link(href: str, base_url: str) -> Optional[LinkClassification]:
    """Resolve *href* against *base_url* and label it internal or external.

    Returns ``None`` for anything that is not a parseable http(s) address
    (``mailto:``, ``javascript:``, malformed hosts, ...).
    """
    try:
        resolved = urljoin(base_url, href)
        parts = urlsplit(resolved)
        host = parts.hostname
        base_host = urlsplit(base_url).hostname
    except ValueError:
        return None

    if parts.scheme not in ("http", "https") or not host:
        return None

    return LinkClassification(url=resolved, internal=host == base_host)


# ---------------------------------------------------------------------------
# Probing
# ---------------------------------------------------------------------------

async def probe_link(client: httpx.AsyncClient, url: str, timeout: float) -> int:
    """GET *url* and return its status code.

    Only the response headers are read; the body is never downloaded.

    Raises:
        ProbeError: On a transport failure, a timeout, or a status >= 400.
    """
    async def _status() -> int:
        async with client.stream("GET", url, timeout=timeout) as response:
            return response.status_code

    try:
        status = await asyncio.wait_for(_status(), timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        raise ProbeError(
            ProbeErrorKind.TIMEOUT, url, f"Timed out after {timeout:g}s"
        ) from exc
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        # ValueError covers hosts the client cannot encode (bad IDNA labels).
        raise ProbeError(ProbeErrorKind.NETWORK, url, describe(exc)) from exc

    if status >= 400:
        raise ProbeError(ProbeErrorKind.HTTP_STATUS, url, status_code=status)
    return status


def _broken_link(exc: ProbeError) -> BrokenLink:
    if exc.kind is ProbeErrorKind.HTTP_STATUS:
        return BrokenLink(url=exc.url, status_code=exc.status_code)
    return BrokenLink(url=exc.url, error=str(exc))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def verify_links(
    links: Iterable[str],
    base_url: str,
    client: httpx.AsyncClient,
    *,
    link_timeout: Optional[float] = None,
    max_concurrency: Optional[int] = None,
    budget: Optional[float] = None,
    dedupe: Optional[bool] = None,
) -> LinkReport:
    """Classify and probe every link in *links*.

    Args:
        links: Link inventory in document order (hrefs, absolute or relative).
        base_url: Address of the page the links were found on.
        client: Shared HTTP client for all probes.
        link_timeout: Deadline for a single probe.  Defaults to
            ``settings.link_check_timeout``.
        max_concurrency: Maximum probes in flight.  Defaults to
            ``settings.max_concurrent_probes``.
        budget: Overall deadline for the verification, in seconds.  ``None``
            waits for every probe.
        dedupe: Probe each distinct resolved address once.  Counts still
            include every anchor.  Defaults to ``settings.dedupe_links``.

    Returns:
        A :class:`LinkReport`.  Broken links appear in completion order.
    """
    link_timeout = settings.link_check_timeout if link_timeout is None else link_timeout
    max_concurrency = max_concurrency or settings.max_concurrent_probes
    dedupe = settings.dedupe_links if dedupe is None else dedupe

    report = LinkReport()
    targets: List[str] = []
    seen: set[str] = set()

    for href in links:
        link = classify_link(href, base_url)
        if link is None:
            continue
        if link.internal:
            report.internal_links += 1
        else:
            report.external_links += 1
        if dedupe:
            if link.url in seen:
                continue
            seen.add(link.url)
        targets.append(link.url)

    if not targets:
        return report

    semaphore = asyncio.Semaphore(max_concurrency)

    async def _check(url: str) -> None:
        async with semaphore:
            try:
                await probe_link(client, url, link_timeout)
            except ProbeError as exc:
                logger.debug("Broken link %s: %s", url, exc)
                report.broken_links.append(_broken_link(exc))
        report.probed += 1

    tasks = [asyncio.ensure_future(_check(url)) for url in targets]
    try:
        _, pending = await asyncio.wait(tasks, timeout=budget)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        # Let cancelled probes unwind before returning.
        await asyncio.gather(*tasks, return_exceptions=True)

    # Anything other than a ProbeError is a verifier failure, not a broken link.
    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()

    if pending:
        report.complete = False
        logger.warning(
            "Link verification for %s cut short: %d of %d probes cancelled",
            base_url, len(pending), len(tasks),
        )
    return report
