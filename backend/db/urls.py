"""CRUD operations for the ``urls`` and ``analyses`` tables."""

from __future__ import annotations

import sqlite3
from time import time
from typing import Iterable, Optional

from backend.crawler.models import AnalysisResult
from backend.db.models import Analysis, UrlRecord

STATUSES = ("pending", "running", "completed", "failed")


class DuplicateUrlError(ValueError):
    """Raised when a URL is added twice."""


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _row_to_url(row: sqlite3.Row) -> UrlRecord:
    return UrlRecord(
        id=row["id"],
        url=row["url"],
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_analysis(row: sqlite3.Row) -> Analysis:
    return Analysis(
        id=row["id"],
        url_id=row["url_id"],
        html_version=row["html_version"],
        title=row["title"],
        headings=row["headings"],
        internal_links=row["internal_links"],
        external_links=row["external_links"],
        inaccessible_links=row["inaccessible_links"],
        has_login_form=bool(row["has_login_form"]),
        broken_links=row["broken_links"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------

def create_url(conn: sqlite3.Connection, url: str) -> UrlRecord:
    """Insert a new URL in ``pending`` state and return it.

    Raises:
        DuplicateUrlError: If *url* is already stored.
    """
    now = int(time())
    try:
        with conn:
            cursor = conn.execute(
                "INSERT INTO urls (url, status, created_at, updated_at) VALUES (?, 'pending', ?, ?)",
                (url, now, now),
            )
    except sqlite3.IntegrityError as exc:
        raise DuplicateUrlError(f"URL already exists: {url!r}") from exc

    return get_url(conn, cursor.lastrowid)  # type: ignore[return-value]


def get_url(
    conn: sqlite3.Connection,
    url_id: int,
    with_analysis: bool = False,
) -> Optional[UrlRecord]:
    """Fetch a single URL by id.  Returns ``None`` if not found."""
    row = conn.execute("SELECT * FROM urls WHERE id = ?", (url_id,)).fetchone()
    if row is None:
        return None
    record = _row_to_url(row)
    if with_analysis:
        record.analysis = get_analysis(conn, url_id)
    return record


def list_urls(
    conn: sqlite3.Connection,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> list[UrlRecord]:
    """Return URLs, newest first, optionally filtered by status and substring.

    Each record carries its analysis when one exists.
    """
    clauses: list[str] = []
    params: list[object] = []
    if status:
        clauses.append("status = ?")
        params.append(status)
    if search:
        clauses.append("url LIKE ?")
        params.append(f"%{search}%")
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    rows = conn.execute(
        f"SELECT * FROM urls {where} ORDER BY created_at DESC, id DESC",  # noqa: S608
        params,
    ).fetchall()
    records = [_row_to_url(r) for r in rows]

    if records:
        ids = [r.id for r in records]
        analysis_rows = conn.execute(
            f"SELECT * FROM analyses WHERE url_id IN ({_placeholders(ids)})",  # noqa: S608
            ids,
        ).fetchall()
        by_url = {a.url_id: a for a in map(_row_to_analysis, analysis_rows)}
        for record in records:
            record.analysis = by_url.get(record.id)
    return records


def get_urls(conn: sqlite3.Connection, url_ids: Iterable[int]) -> list[UrlRecord]:
    ids = list(url_ids)
    if not ids:
        return []
    rows = conn.execute(
        f"SELECT * FROM urls WHERE id IN ({_placeholders(ids)}) ORDER BY id",  # noqa: S608
        ids,
    ).fetchall()
    return [_row_to_url(r) for r in rows]


def update_status(conn: sqlite3.Connection, url_id: int, status: str) -> None:
    """Set the crawl status of a URL.

    Raises:
        ValueError: If *status* is unknown or the URL does not exist.
    """
    if status not in STATUSES:
        raise ValueError(f"Unknown status {status!r}")
    with conn:
        cursor = conn.execute(
            "UPDATE urls SET status = ?, updated_at = ? WHERE id = ?",
            (status, int(time()), url_id),
        )
    if cursor.rowcount == 0:
        raise ValueError(f"URL not found: {url_id!r}")


def delete_url(conn: sqlite3.Connection, url_id: int) -> bool:
    """Delete a URL and its analysis.  Returns ``False`` if it did not exist."""
    return delete_urls(conn, [url_id]) > 0


def delete_urls(conn: sqlite3.Connection, url_ids: Iterable[int]) -> int:
    """Delete several URLs; returns how many rows were removed."""
    ids = list(url_ids)
    if not ids:
        return 0
    with conn:
        cursor = conn.execute(
            f"DELETE FROM urls WHERE id IN ({_placeholders(ids)})", ids  # noqa: S608
        )
    return cursor.rowcount


def status_counts(conn: sqlite3.Connection) -> dict[str, int]:
    """Return the number of URLs in each status (zero-filled)."""
    counts = {status: 0 for status in STATUSES}
    for row in conn.execute("SELECT status, COUNT(*) AS n FROM urls GROUP BY status"):
        counts[row["status"]] = row["n"]
    return counts


# ---------------------------------------------------------------------------
# Analyses
# ---------------------------------------------------------------------------

def save_analysis(conn: sqlite3.Connection, url_id: int, result: AnalysisResult) -> Analysis:
    """Store *result* for *url_id*, replacing any previous analysis."""
    now = int(time())
    with conn:
        conn.execute(
            """
            INSERT INTO analyses (
                url_id, html_version, title, headings, internal_links,
                external_links, inaccessible_links, has_login_form,
                broken_links, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(url_id) DO UPDATE SET
                html_version       = excluded.html_version,
                title              = excluded.title,
                headings           = excluded.headings,
                internal_links     = excluded.internal_links,
                external_links     = excluded.external_links,
                inaccessible_links = excluded.inaccessible_links,
                has_login_form     = excluded.has_login_form,
                broken_links       = excluded.broken_links,
                updated_at         = excluded.updated_at
            """,
            (
                url_id,
                result.html_version.value,
                result.title,
                result.headings_json(),
                result.internal_links,
                result.external_links,
                result.inaccessible_links,
                int(result.has_login_form),
                result.broken_links_json(),
                now,
                now,
            ),
        )
    return get_analysis(conn, url_id)  # type: ignore[return-value]


def get_analysis(conn: sqlite3.Connection, url_id: int) -> Optional[Analysis]:
    row = conn.execute("SELECT * FROM analyses WHERE url_id = ?", (url_id,)).fetchone()
    return _row_to_analysis(row) if row else None
