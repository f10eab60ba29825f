"""FastAPI application factory.

Lifespan
--------
On startup the app opens a single SQLite connection (shared across all
requests via ``request.app.state.db``), builds the process-wide
:class:`~backend.events.hub.StatusHub` and the
:class:`~backend.crawler.orchestrator.CrawlOrchestrator` that publishes to it.
On shutdown it cancels in-flight crawls, closes every status subscriber and
then the connection.

Routers
-------
    /urls   URL management; adding or re-running a URL starts a crawl
    /ws     WebSocket stream of crawl status events
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.config import configure_logging, settings
from backend.crawler.orchestrator import CrawlOrchestrator
from backend.db import SqliteJobStore, get_connection, init_db
from backend.events.hub import StatusHub

from backend.api.routers import status as status_router
from backend.api.routers import urls as urls_router

logger = logging.getLogger(__name__)


def create_app(db_path: Optional[Path] = None) -> FastAPI:
    """Return a fully-configured FastAPI application instance.

    Args:
        db_path: Override the DB path (``":memory:"`` in tests).  Defaults to
            ``settings.db_path``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        conn = get_connection(db_path)
        init_db(conn)
        hub = StatusHub()
        orchestrator = CrawlOrchestrator(hub, store=SqliteJobStore(conn), settings=settings)

        app.state.db = conn
        app.state.hub = hub
        app.state.orchestrator = orchestrator
        logger.info("Crawler API ready (database: %s)", db_path or settings.db_path)
        try:
            yield
        finally:
            await orchestrator.shutdown()
            hub.close()
            conn.close()

    app = FastAPI(
        title="Website Crawler API",
        description=(
            "Fetches web pages, reports their HTML structure, checks every "
            "link on them, and streams crawl progress over a WebSocket."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Allow browser frontends on any origin (tighten for production).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(urls_router.router, prefix="/urls", tags=["urls"])
    app.include_router(status_router.router, tags=["status"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn backend.api.app:app --reload
app = create_app()
