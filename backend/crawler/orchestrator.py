"""Crawl orchestrator: drives one job through fetch → analyze → verify.

Job lifecycle::

    pending ──► running ──► completed   (result persisted, "completed" published)
                       └──► failed      (nothing persisted, "failed" published)

A finished job may be run again; it is reset to ``pending`` first and the new
result replaces the old one.  Only one execution per job ID may be active at
a time.

The orchestrator never reaches for a global hub or store: both are passed to
the constructor.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol

import httpx

from backend.config import Settings, settings as default_settings
from backend.crawler.analyzer import analyze_document
from backend.crawler.errors import (
    FetchError,
    FetchErrorKind,
    JobAlreadyRunningError,
    JobError,
    JobErrorKind,
    describe,
)
from backend.crawler.fetcher import fetch_page, new_client
from backend.crawler.models import AnalysisResult, Job, JobId, JobState
from backend.crawler.verifier import verify_links
from backend.events.hub import StatusHub
from backend.events.messages import crawl_status

logger = logging.getLogger(__name__)


class ResultStore(Protocol):
    """Persistence collaborator for job state and results."""

    def set_status(self, job_id: JobId, state: JobState) -> None: ...

    def save_analysis(self, job_id: JobId, result: AnalysisResult) -> None: ...


class CrawlOrchestrator:
    """Runs crawl jobs and reports their progress to a :class:`StatusHub`.

    Args:
        hub: The process-wide status hub.
        store: Optional persistence collaborator.  Without one, results are
            only returned to the caller.
        settings: Timeouts and concurrency limits.
        client_factory: Builds the HTTP client used for one job.
    """

    def __init__(
        self,
        hub: StatusHub,
        store: Optional[ResultStore] = None,
        settings: Optional[Settings] = None,
        client_factory: Callable[[], httpx.AsyncClient] = new_client,
    ) -> None:
        self._hub = hub
        self._store = store
        self._settings = settings or default_settings
        self._client_factory = client_factory
        self._active: set[JobId] = set()
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_running(self, job_id: JobId) -> bool:
        return job_id in self._active

    async def run(self, job: Job) -> Optional[AnalysisResult]:
        """Execute *job* to completion and return its result.

        Returns ``None`` when the job fails; the failure is reported through
        the hub, not raised.

        Raises:
            JobAlreadyRunningError: If *job* already has an active execution.
        """
        self._reserve(job.id)
        return await self._run_reserved(job)

    def submit(self, job: Job) -> asyncio.Task:
        """Schedule *job* in the background and return its task.

        Raises:
            JobAlreadyRunningError: If *job* already has an active execution.
        """
        self._reserve(job.id)
        task = asyncio.create_task(self._run_reserved(job), name=f"crawl-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self) -> None:
        """Cancel background jobs and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _reserve(self, job_id: JobId) -> None:
        if job_id in self._active:
            raise JobAlreadyRunningError(job_id)
        self._active.add(job_id)

    async def _run_reserved(self, job: Job) -> Optional[AnalysisResult]:
        try:
            return await self._execute(job)
        finally:
            self._active.discard(job.id)

    async def _execute(self, job: Job) -> Optional[AnalysisResult]:
        if job.state.is_terminal:
            job.reset()
        self._advance(job, JobState.RUNNING)
        self._hub.publish(crawl_status(job.id, "running"))
        logger.info("Crawl %s started: %s", job.id, job.url)

        try:
            result = await self._crawl(job.url)
            if self._store is not None:
                self._store.save_analysis(job.id, result)
        except asyncio.CancelledError:
            self._fail(job, "Crawl cancelled")
            raise
        except Exception as exc:  # noqa: BLE001
            self._fail(job, describe(exc))
            return None

        self._advance(job, JobState.COMPLETED)
        self._hub.publish(crawl_status(job.id, "completed"))
        logger.info(
            "Crawl %s completed: %d internal, %d external, %d broken",
            job.id, result.internal_links, result.external_links, result.inaccessible_links,
        )
        return result

    def _advance(self, job: Job, state: JobState) -> None:
        job.transition(state)
        if self._store is not None:
            self._store.set_status(job.id, state)

    def _fail(self, job: Job, error: str) -> None:
        self._advance(job, JobState.FAILED)
        self._hub.publish(crawl_status(job.id, "failed", error=error))
        logger.info("Crawl %s failed: %s", job.id, error)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _crawl(self, url: str) -> AnalysisResult:
        """Fetch, analyze and verify *url* within the job deadline.

        Raises:
            FetchError: The page could not be retrieved.
            ParseError: The page could not be parsed.
            JobError: The job deadline elapsed.
        """
        cfg = self._settings
        loop = asyncio.get_running_loop()
        deadline = loop.time() + cfg.crawl_timeout

        def remaining() -> float:
            return max(deadline - loop.time(), 0.0)

        def deadline_exceeded() -> JobError:
            return JobError(
                JobErrorKind.DEADLINE_EXCEEDED,
                f"Crawl of {url} timed out after {cfg.crawl_timeout:g}s",
            )

        async with self._client_factory() as client:
            fetch_budget = min(cfg.fetch_timeout, remaining())
            try:
                page = await fetch_page(client, url, timeout=fetch_budget)
            except FetchError as exc:
                if exc.kind is FetchErrorKind.TIMEOUT and fetch_budget < cfg.fetch_timeout:
                    raise deadline_exceeded() from exc
                raise

            # Parsing is CPU-bound; keep it off the event loop and inside the deadline.
            try:
                analysis = await asyncio.wait_for(
                    asyncio.to_thread(analyze_document, page.content, page.url),
                    remaining(),
                )
            except asyncio.TimeoutError as exc:
                raise deadline_exceeded() from exc

            report = await verify_links(
                analysis.links,
                page.url,
                client,
                link_timeout=cfg.link_check_timeout,
                max_concurrency=cfg.max_concurrent_probes,
                budget=remaining(),
                dedupe=cfg.dedupe_links,
            )
            if not report.complete:
                raise deadline_exceeded()

        return AnalysisResult.assemble(analysis, report)
