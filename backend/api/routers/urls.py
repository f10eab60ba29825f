"""URL management endpoints.  Adding or re-running a URL starts a crawl.

Routes
------
GET    /urls                  List URLs (optional ?status= and ?search= filters)
POST   /urls                  Add a URL and start crawling it
GET    /urls/{url_id}         Fetch a URL with its analysis
PUT    /urls/{url_id}/rerun   Crawl a URL again
DELETE /urls/{url_id}         Delete a URL and its analysis
POST   /urls/bulk-delete      Delete several URLs
POST   /urls/bulk-rerun       Crawl several URLs again

Crawls run in the background on the server's event loop; progress is
published on the ``/ws`` status stream.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, HttpUrl

from backend.crawler.errors import JobAlreadyRunningError
from backend.crawler.models import Job
from backend.crawler.orchestrator import CrawlOrchestrator
from backend.db import urls as url_db
from backend.db.models import UrlRecord
from backend.events.hub import StatusHub
from backend.events.messages import UrlSummary, UrlUpdateMessage

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class AddUrlRequest(BaseModel):
    url: HttpUrl


class BulkActionRequest(BaseModel):
    url_ids: list[int]


class AnalysisResponse(BaseModel):
    id: int
    url_id: int
    html_version: str
    title: str
    headings: str
    internal_links: int
    external_links: int
    inaccessible_links: int
    has_login_form: bool
    broken_links: str
    created_at: int
    updated_at: int


class UrlResponse(BaseModel):
    id: int
    url: str
    status: str
    created_at: int
    updated_at: int
    analysis: Optional[AnalysisResponse] = None


class StatsResponse(BaseModel):
    pending: int
    running: int
    completed: int
    failed: int


class UrlListResponse(BaseModel):
    urls: list[UrlResponse]
    total: int
    stats: StatsResponse


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _orchestrator(request: Request) -> CrawlOrchestrator:
    return request.app.state.orchestrator


def _hub(request: Request) -> StatusHub:
    return request.app.state.hub


def _require_url(request: Request, url_id: int, with_analysis: bool = False) -> UrlRecord:
    record = url_db.get_url(request.app.state.db, url_id, with_analysis=with_analysis)
    if record is None:
        raise HTTPException(status_code=404, detail=f"URL not found: {url_id}")
    return record


def _start_crawl(request: Request, record: UrlRecord) -> None:
    """Schedule a crawl for *record*; raises ``JobAlreadyRunningError``."""
    _orchestrator(request).submit(Job(id=record.id, url=record.url))


def _announce(request: Request, record: UrlRecord, status: Optional[str] = None) -> None:
    _hub(request).publish(
        UrlUpdateMessage(
            payload=UrlSummary(url_id=record.id, url=record.url, status=status or record.status)
        )
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("", response_model=UrlListResponse)
async def list_all(
    request: Request,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> dict[str, Any]:
    """Return all URLs with their analyses, plus per-status counts."""
    conn = request.app.state.db
    records = url_db.list_urls(conn, status=status, search=search)
    return {
        "urls": [r.to_dict() for r in records],
        "total": len(records),
        "stats": url_db.status_counts(conn),
    }


@router.post("", response_model=UrlResponse, status_code=201)
async def add(body: AddUrlRequest, request: Request) -> dict[str, Any]:
    """Store a new URL and start analysing it in the background."""
    try:
        record = url_db.create_url(request.app.state.db, str(body.url))
    except url_db.DuplicateUrlError as exc:
        raise HTTPException(status_code=409, detail="URL already exists") from exc

    _announce(request, record)
    _start_crawl(request, record)
    return record.to_dict()


@router.get("/{url_id}", response_model=UrlResponse)
async def get_one(url_id: int, request: Request) -> dict[str, Any]:
    """Fetch a single URL with its latest analysis."""
    return _require_url(request, url_id, with_analysis=True).to_dict()


@router.put("/{url_id}/rerun")
async def rerun(url_id: int, request: Request) -> dict[str, Any]:
    """Re-run the analysis for a URL.  Rejected while a crawl is in progress."""
    record = _require_url(request, url_id)
    try:
        _start_crawl(request, record)
    except JobAlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"message": "Analysis started"}


@router.delete("/{url_id}")
async def remove(url_id: int, request: Request) -> Response:
    """Delete a URL and its analysis."""
    record = _require_url(request, url_id)
    if _orchestrator(request).is_running(url_id):
        raise HTTPException(status_code=409, detail="URL is being analysed")
    url_db.delete_url(request.app.state.db, url_id)
    _announce(request, record, status="deleted")
    return Response(status_code=204)


@router.post("/bulk-delete")
async def bulk_delete(body: BulkActionRequest, request: Request) -> dict[str, Any]:
    """Delete several URLs.  URLs with a crawl in progress are skipped."""
    orchestrator = _orchestrator(request)
    conn = request.app.state.db
    records = [
        r for r in url_db.get_urls(conn, body.url_ids) if not orchestrator.is_running(r.id)
    ]
    deleted = url_db.delete_urls(conn, [r.id for r in records])
    for record in records:
        _announce(request, record, status="deleted")
    return {"message": "URLs deleted successfully", "deleted_count": deleted}


@router.post("/bulk-rerun")
async def bulk_rerun(body: BulkActionRequest, request: Request) -> dict[str, Any]:
    """Re-run analysis for several URLs.  URLs already running are skipped."""
    started = 0
    for record in url_db.get_urls(request.app.state.db, body.url_ids):
        try:
            _start_crawl(request, record)
        except JobAlreadyRunningError:
            continue
        started += 1
    return {"message": "Analysis started for selected URLs", "url_count": started}
