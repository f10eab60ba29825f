"""Messages carried by the status hub.

Every message is one variant of a closed, ``type``-tagged union so that
consumers can dispatch on ``message.type`` exhaustively::

    {"type": "crawl_status", "payload": {"url_id": 42, "status": "running"}}
    {"type": "url_update",   "payload": {"url_id": 42, "url": "...", "status": "pending"}}
"""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

JobId = Union[int, str]
CrawlStatusValue = Literal["running", "completed", "failed"]


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

class CrawlStatus(BaseModel):
    url_id: JobId
    status: CrawlStatusValue
    error: Optional[str] = None


class UrlSummary(BaseModel):
    url_id: JobId
    url: str
    status: Literal["pending", "running", "completed", "failed", "deleted"]


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

class CrawlStatusMessage(BaseModel):
    type: Literal["crawl_status"] = "crawl_status"
    payload: CrawlStatus


class UrlUpdateMessage(BaseModel):
    type: Literal["url_update"] = "url_update"
    payload: UrlSummary


HubMessage = Annotated[
    Union[CrawlStatusMessage, UrlUpdateMessage],
    Field(discriminator="type"),
]

_hub_message_adapter: TypeAdapter[HubMessage] = TypeAdapter(HubMessage)


def crawl_status(url_id: JobId, status: CrawlStatusValue, error: Optional[str] = None) -> CrawlStatusMessage:
    """Build a ``crawl_status`` message."""
    return CrawlStatusMessage(payload=CrawlStatus(url_id=url_id, status=status, error=error))


def to_wire(message: HubMessage) -> dict:
    """Return the JSON-ready dict for *message*; unset optional fields are dropped."""
    return message.model_dump(mode="json", exclude_none=True)


def parse_message(data: dict) -> HubMessage:
    """Validate a wire dict back into the matching message variant."""
    return _hub_message_adapter.validate_python(data)
