"""Status events: the hub and the messages it carries."""

from backend.events.hub import StatusHub, Subscriber
from backend.events.messages import (
    CrawlStatus,
    CrawlStatusMessage,
    HubMessage,
    UrlSummary,
    UrlUpdateMessage,
    crawl_status,
    to_wire,
)

__all__ = [
    "StatusHub",
    "Subscriber",
    "CrawlStatus",
    "CrawlStatusMessage",
    "HubMessage",
    "UrlSummary",
    "UrlUpdateMessage",
    "crawl_status",
    "to_wire",
]
