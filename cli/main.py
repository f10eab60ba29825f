"""Website crawler CLI entry-point for all backend operations.

Usage:
    python cli/main.py --help

Commands:
    analyze   → crawl one page and print the analysis (nothing is stored)
    crawl     → crawl one page and store the result in the database
    db        → database operations
    serve     → run the HTTP / WebSocket API
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from backend.xxx import ...`
# works when the CLI is invoked as `python cli/main.py` from any directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import asyncio
import json
from typing import Optional

import typer

from backend.config import configure_logging, settings
from backend.crawler.models import AnalysisResult, Job
from backend.crawler.orchestrator import CrawlOrchestrator, ResultStore
from backend.db import SqliteJobStore, get_connection, init_db
from backend.db import urls as url_db
from backend.events.hub import StatusHub, Subscriber

app = typer.Typer(
    name="crawler",
    help="Website crawler CLI.",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    configure_logging("DEBUG" if verbose else None)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _echo_events(subscriber: Subscriber, prefix: str) -> None:
    """Print each status event as it arrives, until the hub closes."""
    async for message in subscriber:
        line = f"[{prefix}] {message.type}: {message.payload.status}"
        error = getattr(message.payload, "error", None)
        if error:
            line += f" ({error})"
        typer.echo(line)


def _run_job(job: Job, store: Optional[ResultStore], prefix: str) -> Optional[AnalysisResult]:
    async def _go() -> Optional[AnalysisResult]:
        hub = StatusHub()
        printer = asyncio.create_task(_echo_events(hub.subscribe(), prefix))
        orchestrator = CrawlOrchestrator(hub, store=store, settings=settings)
        try:
            return await orchestrator.run(job)
        finally:
            hub.close()
            await printer

    return asyncio.run(_go())


def _print_result(result: AnalysisResult, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return
    headings = ", ".join(f"{k}={v}" for k, v in result.headings.to_dict().items())
    typer.echo(f"  HTML version : {result.html_version.value}")
    typer.echo(f"  Title        : {result.title or '(none)'}")
    typer.echo(f"  Headings     : {headings}")
    typer.echo(f"  Internal     : {result.internal_links}")
    typer.echo(f"  External     : {result.external_links}")
    typer.echo(f"  Inaccessible : {result.inaccessible_links}")
    typer.echo(f"  Login form   : {'yes' if result.has_login_form else 'no'}")
    for link in result.broken_links:
        reason = link.status_code if link.status_code is not None else link.error
        typer.echo(f"    ✗ {link.url}  [{reason}]")


# ---------------------------------------------------------------------------
# Crawl commands
# ---------------------------------------------------------------------------

@app.command("analyze")
def analyze(
    url: str = typer.Option(..., help="Page to analyse."),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
) -> None:
    """Crawl a page and print its analysis without touching the database."""
    typer.echo(f"[analyze] Crawling {url!r} …")
    result = _run_job(Job(id=url, url=url), store=None, prefix="analyze")
    if result is None:
        raise typer.Exit(1)
    _print_result(result, as_json)


@app.command("crawl")
def crawl(
    url: str = typer.Option(..., help="Page to crawl; added to the database if new."),
) -> None:
    """Crawl a page and store the analysis in the database."""
    conn = get_connection()
    init_db(conn)
    try:
        try:
            record = url_db.create_url(conn, url)
        except url_db.DuplicateUrlError:
            record = next(r for r in url_db.list_urls(conn) if r.url == url)
        typer.echo(f"[crawl] Crawling {url!r} (id={record.id}) …")
        result = _run_job(Job(id=record.id, url=record.url), SqliteJobStore(conn), "crawl")
    finally:
        conn.close()

    if result is None:
        raise typer.Exit(1)
    _print_result(result, as_json=False)


# ---------------------------------------------------------------------------
# DB commands
# ---------------------------------------------------------------------------
db_app = typer.Typer(help="Database operations.", no_args_is_help=True)
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """Initialise the SQLite database (create tables if they do not exist)."""
    conn = get_connection()
    init_db(conn)
    conn.close()
    typer.echo(f"[db init] Database ready at {settings.db_path}")


@db_app.command("list")
def db_list(
    status: Optional[str] = typer.Option(None, help="Filter by status."),
) -> None:
    """List stored URLs with their crawl status."""
    conn = get_connection()
    init_db(conn)
    records = url_db.list_urls(conn, status=status)
    conn.close()
    if not records:
        typer.echo("[db list] No URLs found.")
        return
    for r in records:
        broken = r.analysis.inaccessible_links if r.analysis else "-"
        typer.echo(f"  {r.id:>4}  [{r.status}]  {r.url}  broken={broken}")


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------
@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8000, help="Bind port."),
) -> None:
    """Run the HTTP API and WebSocket status stream with uvicorn."""
    import uvicorn

    uvicorn.run("backend.api.app:app", host=host, port=port, log_level=settings.log_level.lower())


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
