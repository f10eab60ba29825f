"""Tests for the crawl orchestrator: job lifecycle, status events, deadlines
and persistence hand-off.

Mocking strategy:
- ``respx`` serves the page and every link probe.
- ``FakeStore`` records what the orchestrator persists.
- Deadline tests use a stalling transport or a slow fake ``probe_link``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

import httpx
import pytest
import respx

from backend.config import Settings
from backend.crawler import verifier
from backend.crawler.analyzer import analyze_document
from backend.crawler.errors import InvalidTransitionError, JobAlreadyRunningError
from backend.crawler.fetcher import new_client
from backend.crawler.models import AnalysisResult, HtmlVersion, Job, JobState
from backend.crawler.orchestrator import CrawlOrchestrator
from backend.events.hub import StatusHub
from backend.events.messages import crawl_status

_PAGE = """\
<!DOCTYPE html>
<html>
<head><title>Shop</title></head>
<body>
  <header><h1>Shop</h1></header>
  <form action="/login"><input type="password" name="pw"></form>
  <a href="/products">Products</a>
  <a href="https://example.com/missing">Missing</a>
  <a href="https://partner.org/">Partner</a>
  <a href="mailto:sales@example.com">Mail</a>
</body>
</html>
"""


class FakeStore:
    def __init__(self, fail_on_save: bool = False) -> None:
        self.statuses: list[tuple[object, JobState]] = []
        self.saved: dict[object, AnalysisResult] = {}
        self._fail_on_save = fail_on_save

    def set_status(self, job_id, state: JobState) -> None:
        self.statuses.append((job_id, state))

    def save_analysis(self, job_id, result: AnalysisResult) -> None:
        if self._fail_on_save:
            raise RuntimeError("disk full")
        self.saved[job_id] = result


class _StallingTransport(httpx.AsyncBaseTransport):
    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(10)
        return httpx.Response(200)


def _settings(**overrides) -> Settings:
    base = dict(
        crawl_timeout=60.0,
        fetch_timeout=10.0,
        link_check_timeout=5.0,
        max_concurrent_probes=4,
        dedupe_links=False,
    )
    base.update(overrides)
    return Settings(**base)


def _mock_site(page_status: int = 200) -> None:
    respx.get("https://example.com/").mock(return_value=httpx.Response(page_status, text=_PAGE))
    respx.get("https://example.com/products").mock(return_value=httpx.Response(200))
    respx.get("https://example.com/missing").mock(return_value=httpx.Response(404))
    respx.get("https://partner.org/").mock(side_effect=httpx.ConnectError("Connection refused"))


def _events(subscriber) -> list[tuple[object, str, Optional[str]]]:
    events = []
    while subscriber.pending():
        message = subscriber.get_nowait()
        events.append((message.payload.url_id, message.payload.status, message.payload.error))
    return events


def _run(orchestrator: CrawlOrchestrator, job: Job) -> Optional[AnalysisResult]:
    return asyncio.run(orchestrator.run(job))


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestSuccessfulCrawl:
    def test_result_and_events(self) -> None:
        hub = StatusHub()
        subscriber = hub.subscribe()
        store = FakeStore()
        orchestrator = CrawlOrchestrator(hub, store=store, settings=_settings())
        job = Job(id=42, url="https://example.com/")

        with respx.mock:
            _mock_site()
            result = _run(orchestrator, job)

        assert result is not None
        assert result.html_version is HtmlVersion.HTML5
        assert result.title == "Shop"
        assert result.headings.h1 == 1
        assert result.has_login_form is True
        assert result.internal_links == 2
        assert result.external_links == 1
        assert result.inaccessible_links == len(result.broken_links) == 2

        by_url = {b.url: b for b in result.broken_links}
        assert by_url["https://example.com/missing"].status_code == 404
        assert by_url["https://partner.org/"].error

        assert job.state is JobState.COMPLETED
        assert _events(subscriber) == [(42, "running", None), (42, "completed", None)]
        assert store.statuses == [(42, JobState.RUNNING), (42, JobState.COMPLETED)]
        assert store.saved[42] is result

    def test_error_page_is_still_analysed(self) -> None:
        hub = StatusHub()
        orchestrator = CrawlOrchestrator(hub, settings=_settings())

        with respx.mock:
            _mock_site(page_status=503)
            result = _run(orchestrator, Job(id=1, url="https://example.com/"))

        assert result is not None
        assert result.title == "Shop"

    def test_result_serialises_to_wire_shape(self) -> None:
        orchestrator = CrawlOrchestrator(StatusHub(), settings=_settings())
        with respx.mock:
            _mock_site()
            result = _run(orchestrator, Job(id=1, url="https://example.com/"))

        data = result.to_dict()
        assert set(data) == {
            "html_version", "title", "headings", "internal_links", "external_links",
            "inaccessible_links", "has_login_form", "broken_links",
        }
        assert data["headings"] == '{"h1": 1, "h2": 0, "h3": 0, "h4": 0, "h5": 0, "h6": 0}'
        assert data["inaccessible_links"] == 2


    def test_unencodable_link_does_not_fail_job(self) -> None:
        hub = StatusHub()
        subscriber = hub.subscribe()
        orchestrator = CrawlOrchestrator(hub, settings=_settings())
        job = Job(id=8, url="http://example.com/")
        page = '<html><body><a href="http://example.com/ok">ok</a><a href="http://xn--zz.com/">bad</a></body></html>'

        with respx.mock:
            respx.get("http://example.com/").mock(return_value=httpx.Response(200, text=page))
            respx.get("http://example.com/ok").mock(return_value=httpx.Response(200))
            respx.get("http://xn--zz.com/").mock(side_effect=UnicodeError("Invalid A-label"))
            result = _run(orchestrator, job)

        assert job.state is JobState.COMPLETED
        assert result is not None
        assert [(b.url, b.error) for b in result.broken_links] == [("http://xn--zz.com/", "Invalid A-label")]
        assert [e[1] for e in _events(subscriber)] == ["running", "completed"]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestFailedCrawl:
    def test_unresolvable_host_fails_job(self) -> None:
        hub = StatusHub()
        subscriber = hub.subscribe()
        store = FakeStore()
        orchestrator = CrawlOrchestrator(hub, store=store, settings=_settings())
        job = Job(id=7, url="https://no-such-host.invalid/")

        with respx.mock:
            respx.get("https://no-such-host.invalid/").mock(
                side_effect=httpx.ConnectError("Name or service not known")
            )
            result = _run(orchestrator, job)

        assert result is None
        assert job.state is JobState.FAILED
        events = _events(subscriber)
        assert [e[1] for e in events] == ["running", "failed"]
        assert "Name or service not known" in events[1][2]
        assert store.saved == {}
        assert store.statuses[-1] == (7, JobState.FAILED)

    def test_store_failure_fails_job(self) -> None:
        hub = StatusHub()
        subscriber = hub.subscribe()
        orchestrator = CrawlOrchestrator(hub, store=FakeStore(fail_on_save=True), settings=_settings())

        with respx.mock:
            _mock_site()
            result = _run(orchestrator, Job(id=3, url="https://example.com/"))

        assert result is None
        assert _events(subscriber)[-1] == (3, "failed", "disk full")

    def test_fetch_deadline_fails_job(self) -> None:
        hub = StatusHub()
        subscriber = hub.subscribe()
        orchestrator = CrawlOrchestrator(
            hub,
            settings=_settings(crawl_timeout=0.1),
            client_factory=lambda: httpx.AsyncClient(transport=_StallingTransport()),
        )

        result = _run(orchestrator, Job(id=5, url="https://slow.example.com/"))

        assert result is None
        _, status, error = _events(subscriber)[-1]
        assert status == "failed"
        assert "timed out" in error

    def test_verification_deadline_fails_job(self, monkeypatch) -> None:
        async def _slow_probe(client, url: str, timeout: float) -> int:
            await asyncio.sleep(10)
            return 200

        monkeypatch.setattr(verifier, "probe_link", _slow_probe)
        hub = StatusHub()
        subscriber = hub.subscribe()
        store = FakeStore()
        orchestrator = CrawlOrchestrator(hub, store=store, settings=_settings(crawl_timeout=0.3))

        with respx.mock:
            respx.get("https://example.com/").mock(return_value=httpx.Response(200, text=_PAGE))
            result = _run(orchestrator, Job(id=9, url="https://example.com/"))

        assert result is None
        _, status, error = _events(subscriber)[-1]
        assert status == "failed"
        assert "timed out" in error
        assert store.saved == {}


class TestAnalysisOffLoop:
    def test_slow_parse_does_not_block_loop(self, monkeypatch) -> None:
        def _slow_analyze(content, base_url):
            time.sleep(0.3)
            return analyze_document(content, base_url)

        monkeypatch.setattr("backend.crawler.orchestrator.analyze_document", _slow_analyze)
        hub = StatusHub()
        orchestrator = CrawlOrchestrator(hub, settings=_settings())

        async def _go() -> tuple[Optional[AnalysisResult], int]:
            watcher = hub.subscribe()
            delivered = 0

            async def _heartbeat() -> None:
                nonlocal delivered
                while True:
                    hub.publish(crawl_status("other", "running"))
                    await asyncio.sleep(0.02)
                    while watcher.pending():
                        if watcher.get_nowait().payload.url_id == "other":
                            delivered += 1

            beat = asyncio.create_task(_heartbeat())
            try:
                result = await orchestrator.run(Job(id=1, url="https://example.com/"))
            finally:
                beat.cancel()
            return result, delivered

        with respx.mock:
            _mock_site()
            result, delivered = asyncio.run(_go())

        assert result is not None
        assert result.title == "Shop"
        # 0.3s of parsing leaves room for several 20ms heartbeats.
        assert delivered >= 5

    def test_slow_parse_is_bounded_by_deadline(self, monkeypatch) -> None:
        def _stuck_analyze(content, base_url):
            time.sleep(0.5)

        monkeypatch.setattr("backend.crawler.orchestrator.analyze_document", _stuck_analyze)
        hub = StatusHub()
        subscriber = hub.subscribe()
        orchestrator = CrawlOrchestrator(hub, settings=_settings(crawl_timeout=0.1))

        with respx.mock:
            respx.get("https://example.com/").mock(return_value=httpx.Response(200, text=_PAGE))
            result = _run(orchestrator, Job(id=4, url="https://example.com/"))

        assert result is None
        _, status, error = _events(subscriber)[-1]
        assert status == "failed"
        assert "timed out" in error


# ---------------------------------------------------------------------------
# Re-runs and exclusivity
# ---------------------------------------------------------------------------

class TestRerun:
    def test_failed_job_can_be_rerun(self) -> None:
        hub = StatusHub()
        subscriber = hub.subscribe()
        orchestrator = CrawlOrchestrator(hub, settings=_settings())
        job = Job(id=11, url="https://example.com/")

        with respx.mock:
            respx.get("https://example.com/").mock(side_effect=httpx.ConnectError("down"))
            assert _run(orchestrator, job) is None
        assert job.state is JobState.FAILED

        with respx.mock:
            _mock_site()
            assert _run(orchestrator, job) is not None

        assert job.state is JobState.COMPLETED
        assert [e[1] for e in _events(subscriber)] == ["running", "failed", "running", "completed"]

    def test_second_execution_rejected_while_running(self, monkeypatch) -> None:
        async def _go() -> None:
            gate = asyncio.Event()

            async def _slow_fetch(client, url, timeout=None):
                gate.set()
                await asyncio.sleep(10)

            monkeypatch.setattr("backend.crawler.orchestrator.fetch_page", _slow_fetch)
            orchestrator = CrawlOrchestrator(StatusHub(), settings=_settings(), client_factory=new_client)
            task = orchestrator.submit(Job(id=1, url="https://example.com/"))
            await gate.wait()

            assert orchestrator.is_running(1)
            with pytest.raises(JobAlreadyRunningError):
                await orchestrator.run(Job(id=1, url="https://example.com/"))
            with pytest.raises(JobAlreadyRunningError):
                orchestrator.submit(Job(id=1, url="https://example.com/"))

            await orchestrator.shutdown()
            assert task.cancelled()
            assert not orchestrator.is_running(1)

        asyncio.run(_go())

    def test_shutdown_marks_job_failed(self, monkeypatch) -> None:
        async def _go() -> list:
            async def _slow_fetch(client, url, timeout=None):
                await asyncio.sleep(10)

            monkeypatch.setattr("backend.crawler.orchestrator.fetch_page", _slow_fetch)
            hub = StatusHub()
            subscriber = hub.subscribe()
            orchestrator = CrawlOrchestrator(hub, settings=_settings())
            orchestrator.submit(Job(id=2, url="https://example.com/"))
            await asyncio.sleep(0.01)
            await orchestrator.shutdown()
            return _events(subscriber)

        assert asyncio.run(_go()) == [(2, "running", None), (2, "failed", "Crawl cancelled")]


class TestJobStateMachine:
    def test_forward_transitions(self) -> None:
        job = Job(id=1, url="https://example.com/")
        job.transition(JobState.RUNNING)
        job.transition(JobState.COMPLETED)
        assert job.state is JobState.COMPLETED

    def test_no_going_back(self) -> None:
        job = Job(id=1, url="https://example.com/", state=JobState.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            job.transition(JobState.RUNNING)

    def test_cannot_skip_running(self) -> None:
        job = Job(id=1, url="https://example.com/")
        with pytest.raises(InvalidTransitionError):
            job.transition(JobState.COMPLETED)

    def test_reset_only_from_terminal_state(self) -> None:
        job = Job(id=1, url="https://example.com/", state=JobState.RUNNING)
        with pytest.raises(InvalidTransitionError):
            job.reset()
        job.state = JobState.FAILED
        job.reset()
        assert job.state is JobState.PENDING
