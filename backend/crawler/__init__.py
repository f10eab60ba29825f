"""Crawler package: page fetch, structural analysis and link verification."""

from backend.crawler.analyzer import analyze_document
from backend.crawler.fetcher import fetch_page
from backend.crawler.models import AnalysisResult, BrokenLink, Job, JobState, RawPage
from backend.crawler.orchestrator import CrawlOrchestrator
from backend.crawler.verifier import classify_link, verify_links

__all__ = [
    "analyze_document",
    "fetch_page",
    "classify_link",
    "verify_links",
    "CrawlOrchestrator",
    "AnalysisResult",
    "BrokenLink",
    "Job",
    "JobState",
    "RawPage",
]
