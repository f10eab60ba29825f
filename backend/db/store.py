"""Adapter exposing the ``urls`` tables as the orchestrator's result store."""

from __future__ import annotations

import sqlite3

from backend.crawler.models import AnalysisResult, JobId, JobState
from backend.db.urls import save_analysis, update_status


class SqliteJobStore:
    """Persists job status and results for a :class:`CrawlOrchestrator`.

    Job IDs are the integer primary keys of the ``urls`` table.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def set_status(self, job_id: JobId, state: JobState) -> None:
        update_status(self._conn, int(job_id), state.value)

    def save_analysis(self, job_id: JobId, result: AnalysisResult) -> None:
        save_analysis(self._conn, int(job_id), result)
