"""Data models for the crawl pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from backend.crawler.errors import InvalidTransitionError

JobId = Union[int, str]


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------

@dataclass
class RawPage:
    """The raw HTTP response for a single page fetch."""

    url: str
    content: bytes
    content_type: str
    status_code: int


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

class HtmlVersion(str, Enum):
    HTML5 = "HTML5"
    XHTML = "XHTML"
    HTML4 = "HTML4"


@dataclass(frozen=True)
class HeadingCount:
    h1: int = 0
    h2: int = 0
    h3: int = 0
    h4: int = 0
    h5: int = 0
    h6: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "h1": self.h1,
            "h2": self.h2,
            "h3": self.h3,
            "h4": self.h4,
            "h5": self.h5,
            "h6": self.h6,
        }


@dataclass(frozen=True)
class BrokenLink:
    """A probed link that failed.

    Exactly one of ``status_code`` (HTTP failure) and ``error`` (transport
    failure) is set.
    """

    url: str
    status_code: Optional[int] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.status_code is None) == (self.error is None):
            raise ValueError("BrokenLink needs exactly one of status_code or error")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"url": self.url}
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class LinkClassification:
    url: str
    internal: bool


@dataclass
class PageAnalysis:
    """Everything the analyzer derives from markup, before link verification."""

    html_version: HtmlVersion
    title: str
    headings: HeadingCount
    has_login_form: bool
    links: List[str] = field(default_factory=list)


@dataclass
class LinkReport:
    """Outcome of verifying one page's link inventory.

    ``complete`` is ``False`` when the verification budget ran out and the
    outstanding probes were cancelled; ``broken_links`` then only covers the
    probes that settled in time.
    """

    internal_links: int = 0
    external_links: int = 0
    broken_links: List[BrokenLink] = field(default_factory=list)
    probed: int = 0
    complete: bool = True


@dataclass(frozen=True)
class AnalysisResult:
    html_version: HtmlVersion
    title: str
    headings: HeadingCount
    internal_links: int
    external_links: int
    has_login_form: bool
    broken_links: Tuple[BrokenLink, ...] = ()

    @property
    def inaccessible_links(self) -> int:
        return len(self.broken_links)

    @classmethod
    def assemble(cls, page: PageAnalysis, report: LinkReport) -> AnalysisResult:
        return cls(
            html_version=page.html_version,
            title=page.title,
            headings=page.headings,
            internal_links=report.internal_links,
            external_links=report.external_links,
            has_login_form=page.has_login_form,
            broken_links=tuple(report.broken_links),
        )

    def headings_json(self) -> str:
        return json.dumps(self.headings.to_dict())

    def broken_links_json(self) -> str:
        return json.dumps([link.to_dict() for link in self.broken_links])

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the wire shape; headings and broken links are JSON text."""
        return {
            "html_version": self.html_version.value,
            "title": self.title,
            "headings": self.headings_json(),
            "internal_links": self.internal_links,
            "external_links": self.external_links,
            "inaccessible_links": self.inaccessible_links,
            "has_login_form": self.has_login_form,
            "broken_links": self.broken_links_json(),
        }


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


_TRANSITIONS = {
    JobState.PENDING: {JobState.RUNNING},
    JobState.RUNNING: {JobState.COMPLETED, JobState.FAILED},
    JobState.COMPLETED: set(),
    JobState.FAILED: set(),
}


@dataclass
class Job:
    id: JobId
    url: str
    state: JobState = JobState.PENDING

    def transition(self, new_state: JobState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Job {self.id!r} cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state

    def reset(self) -> None:
        """Send a terminal job back to ``pending`` so it can be re-run."""
        if not self.state.is_terminal:
            raise InvalidTransitionError(
                f"Job {self.id!r} is {self.state.value}; only finished jobs can be re-run"
            )
        self.state = JobState.PENDING
