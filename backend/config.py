"""Centralised settings for the website crawler backend.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env from the project root (two levels up from this file)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("CRAWLER_WORKSPACE", Path.home() / ".website_crawler")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite database file."""
        return self.workspace_dir / "crawler.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    # ------------------------------------------------------------------
    # Crawl deadlines
    # ------------------------------------------------------------------
    crawl_timeout: float = field(
        default_factory=lambda: float(os.environ.get("CRAWL_TIMEOUT", "300.0"))
    )
    fetch_timeout: float = field(
        default_factory=lambda: float(os.environ.get("FETCH_TIMEOUT", "30.0"))
    )
    link_check_timeout: float = field(
        default_factory=lambda: float(os.environ.get("LINK_CHECK_TIMEOUT", "5.0"))
    )

    # ------------------------------------------------------------------
    # Link verification
    # ------------------------------------------------------------------
    max_concurrent_probes: int = field(
        default_factory=lambda: int(os.environ.get("MAX_CONCURRENT_PROBES", "20"))
    )
    dedupe_links: bool = field(
        default_factory=lambda: _env_flag("DEDUPE_LINKS", "false")
    )
    user_agent: str = field(
        default_factory=lambda: os.environ.get(
            "CRAWLER_USER_AGENT",
            "Mozilla/5.0 (compatible; WebsiteCrawler/1.0)",
        )
    )

    # ------------------------------------------------------------------
    # Status hub
    # ------------------------------------------------------------------
    hub_queue_size: int = field(
        default_factory=lambda: int(os.environ.get("HUB_QUEUE_SIZE", "100"))
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO").upper()
    )

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once; later calls are no-ops."""
    logging.basicConfig(level=level or settings.log_level, format=LOG_FORMAT)


# Module-level singleton; import this everywhere:
#   from backend.config import settings
settings = Settings()
