"""Structural analysis of a fetched page: turns markup into a :class:`PageAnalysis`."""

from __future__ import annotations

from typing import List, Union
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from backend.crawler.errors import ParseError
from backend.crawler.models import HeadingCount, HtmlVersion, PageAnalysis


_HTML5_ELEMENTS = "header, nav, main, section, article, aside, footer"

# Any one of these is enough to flag a login form.
_LOGIN_SELECTORS = (
    "input[type='password' i]",
    "form[action*='login' i]",
    "form[action*='signin' i]",
    ".login-form",
    "#login-form",
)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _parse(content: Union[bytes, str]) -> BeautifulSoup:
    try:
        return BeautifulSoup(content, "html.parser")
    except ParserRejectedMarkup as exc:
        raise ParseError(f"Failed to parse HTML: {exc}") from exc


def _detect_html_version(soup: BeautifulSoup) -> HtmlVersion:
    if soup.select_one(_HTML5_ELEMENTS) is not None:
        return HtmlVersion.HTML5
    if soup.select_one("html[xmlns]") is not None:
        return HtmlVersion.XHTML
    return HtmlVersion.HTML4


def _extract_title(soup: BeautifulSoup) -> str:
    """Return the trimmed text of the first ``<title>`` tag, or empty string."""
    title = soup.find("title")
    if title is None:
        return ""
    return title.get_text().strip()


def _count_headings(soup: BeautifulSoup) -> HeadingCount:
    counts = {f"h{level}": len(soup.find_all(f"h{level}")) for level in range(1, 7)}
    return HeadingCount(**counts)


def _has_login_form(soup: BeautifulSoup) -> bool:
    return any(soup.select_one(selector) is not None for selector in _LOGIN_SELECTORS)


def _extract_links(soup: BeautifulSoup, base_url: str) -> List[str]:
    """Return every ``<a href>`` in document order, resolved against *base_url*.

    Duplicates are kept.  An href that cannot be resolved is returned as-is
    so the link verifier can discard it.
    """
    links: List[str] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        try:
            links.append(urljoin(base_url, href))
        except ValueError:
            links.append(href)
    return links


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def analyze_document(content: Union[bytes, str], base_url: str) -> PageAnalysis:
    """Derive markup version, title, headings, login heuristic and links.

    Pure function of *content*; no network access.

    Raises:
        ParseError: If the parser rejects the markup outright.
    """
    soup = _parse(content)
    return PageAnalysis(
        html_version=_detect_html_version(soup),
        title=_extract_title(soup),
        headings=_count_headings(soup),
        has_login_form=_has_login_form(soup),
        links=_extract_links(soup, base_url),
    )
