"""Dataclass models representing DB rows.

These are plain Python objects – not ORM models.  The DB layer serialises /
deserialises to and from these types.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Optional


@dataclass
class Analysis:
    id: int
    url_id: int
    html_version: str
    title: str
    headings: str  # JSON text: {"h1": n, ..., "h6": n}
    internal_links: int
    external_links: int
    inaccessible_links: int
    has_login_form: bool
    broken_links: str  # JSON text: [{"url": ..., "status_code"?: n, "error"?: s}]
    created_at: int
    updated_at: int

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------
    def headings_dict(self) -> dict[str, int]:
        return json.loads(self.headings or "{}")

    def broken_links_list(self) -> list[dict[str, Any]]:
        return json.loads(self.broken_links or "[]")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class UrlRecord:
    id: int
    url: str
    status: str
    created_at: int
    updated_at: int
    analysis: Optional[Analysis] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.analysis is None:
            data.pop("analysis")
        return data
