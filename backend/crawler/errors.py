"""Exception hierarchy for the crawl pipeline.

Fetch and parse errors are fatal to a job.  Probe errors never escape the
link verifier: each one is turned into a :class:`BrokenLink` record.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class CrawlerError(Exception):
    """Base class for every error raised by the crawler package."""


def describe(exc: BaseException) -> str:
    """Return a non-empty, human-readable description of *exc*."""
    return str(exc) or type(exc).__name__


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------

class FetchErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    INVALID_ADDRESS = "invalid_address"


class FetchError(CrawlerError):
    """The target page could not be retrieved."""

    def __init__(self, kind: FetchErrorKind, url: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.url = url


# ---------------------------------------------------------------------------
# Parse
# ---------------------------------------------------------------------------

class ParseError(CrawlerError):
    """The fetched content could not be parsed as markup."""


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------

class ProbeErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"


class ProbeError(CrawlerError):
    """A single link probe failed.

    ``status_code`` is set only for :attr:`ProbeErrorKind.HTTP_STATUS`.
    """

    def __init__(
        self,
        kind: ProbeErrorKind,
        url: str,
        message: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message or f"HTTP {status_code}")
        self.kind = kind
        self.url = url
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

class JobErrorKind(str, Enum):
    DEADLINE_EXCEEDED = "deadline_exceeded"


class JobError(CrawlerError):
    """A job-level failure that preempts whichever step was in flight."""

    def __init__(self, kind: JobErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class JobAlreadyRunningError(CrawlerError):
    """Raised when a job is started while a previous execution is active."""

    def __init__(self, job_id: object) -> None:
        super().__init__(f"Job {job_id!r} is already running")
        self.job_id = job_id


class InvalidTransitionError(CrawlerError):
    """Raised when a job is moved to a state it cannot reach."""
