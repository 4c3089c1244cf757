"""
Pytest configuration and fixtures for CiteScan engine tests.

Every test gets its own file-backed SQLite database and scripted fake
collaborators, so the whole pipeline runs without network access.
"""

from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from citescan.core.config import Settings
from citescan.db.database import Base, create_engine, create_session_maker
from citescan.db.store import JobStore
from citescan.jobs.lock import LockManager
from citescan.jobs.outputs import CrawledPage
from citescan.jobs.pipeline import PipelineController
from citescan.jobs.progress import ProgressReporter
from citescan.jobs.scheduler import Scheduler
from citescan.jobs.steps import Collaborators
from citescan.services.ai.interface import AnalysisService
from citescan.services.notifications import NotificationService
from citescan.services.search_engine import SearchResult, SearchService
from citescan.services.web_crawler import CrawlService

HUB_DIMENSIONS = ("clarity", "structure", "depth", "authority")


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


# =============================================================================
# Fake collaborators
# =============================================================================


def make_page(url: str, title: str, headings: list[str], text: str, links: list[str] | None = None) -> CrawledPage:
    return CrawledPage(
        url=url,
        title=title,
        headings=headings,
        content_excerpt=text,
        outbound_links=links or [],
    )


def site_pages() -> list[CrawledPage]:
    return [
        make_page(
            "https://acmeplumbing.com/",
            "Acme Plumbing | Drain Cleaning & Water Heaters",
            ["Acme Plumbing", "Drain cleaning and water heater repair"],
            "Acme Plumbing has served Springfield since 1998. We clear clogged drains "
            "and repair water heaters, tank and tankless.",
            ["https://www.youtube.com/@acmeplumbing", "https://example-partner.com/"],
        ),
        make_page(
            "https://acmeplumbing.com/services/drain-cleaning",
            "Drain Cleaning Services",
            ["Drain cleaning", "Clogged drain and sewer line service"],
            "Professional drain cleaning for clogged drains, sewer lines and kitchen sinks. "
            "Hydro jetting and camera inspection.",
            ["https://www.reddit.com/r/Plumbing/comments/abc/drain_cleaning_tips"],
        ),
        make_page(
            "https://acmeplumbing.com/services/water-heaters",
            "Water Heater Repair",
            ["Water heater repair", "Tankless water heater installation"],
            "Water heater repair and replacement. Tankless water heater installation "
            "and annual flushing.",
        ),
        make_page(
            "https://acmeplumbing.com/about",
            "About Us",
            ["About Acme Plumbing", "Our team"],
            "Founded in 1998, Acme Plumbing is a family business. Our owner is a "
            "licensed master plumber. Award-winning service, winner of the 2024 "
            "Springfield Best of Business award. Over 25 years of experience.",
        ),
        make_page(
            "https://acmeplumbing.com/blog/2024/drain-tips",
            "Five Drain Tips",
            ["Drain tips"],
            "Keep your drain clear with these tips for clogged drain prevention.",
        ),
    ]


class FakeCrawler(CrawlService):
    def __init__(self, pages: list[CrawledPage] | None = None, error: Exception | None = None):
        self.pages = site_pages() if pages is None else pages
        self.error = error
        self.calls: list[str] = []
        self.on_page = None  # Optional async hook(page_number)

    async def crawl(self, domain: str) -> AsyncIterator[CrawledPage]:
        self.calls.append(domain)
        if self.error is not None:
            raise self.error
        for i, page in enumerate(self.pages, 1):
            if self.on_page is not None:
                await self.on_page(i)
            yield page


def topics_response() -> dict[str, Any]:
    return {
        "topics": [
            {"topic": "Drain Cleaning", "keywords": ["drain cleaning", "clogged drain", "sewer"], "priority": 1},
            {"topic": "Water Heater Repair", "keywords": ["water heater", "tankless", "repair"], "priority": 2},
        ]
    }


def hub_score_response(score: int = 12) -> dict[str, Any]:
    return {
        "scores": {
            d: {"score": score, "issues": [f"Weak {d}"], "recommendations": [f"Improve {d}"]}
            for d in HUB_DIMENSIONS
        }
    }


def authority_response() -> dict[str, Any]:
    return {
        "credentials": ["Licensed master plumber"],
        "awards": ["Springfield Best of Business 2024"],
        "tenure": ["Serving Springfield since 1998"],
    }


class FakeAnalyzer(AnalysisService):
    """Answers by prompt type. Queued errors are raised first, one per call."""

    def __init__(self):
        self.errors: list[Exception] = []
        self.responses: dict[str, Any] = {
            "topics": topics_response(),
            "hub": hub_score_response(),
            "authority": authority_response(),
        }
        self.calls: list[str] = []

    @staticmethod
    def kind_of(prompt: str) -> str:
        if "most important topics" in prompt:
            return "topics"
        if "four dimensions" in prompt:
            return "hub"
        return "authority"

    async def analyze(self, prompt: str, content: str) -> dict[str, Any]:
        kind = self.kind_of(prompt)
        self.calls.append(kind)
        if self.errors:
            raise self.errors.pop(0)
        return self.responses[kind]

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def model_name(self) -> str:
        return "fake-model"


class FakeSearch(SearchService):
    def __init__(self, results: dict[str, list[SearchResult]] | None = None):
        self.results = results
        self.queries: list[str] = []

    async def search(self, query: str, max_results: int = 10) -> list[SearchResult]:
        self.queries.append(query)
        if self.results is not None:
            return self.results.get(query, [])[:max_results]
        topic = query.split('" ', 1)[-1]
        slug = topic.lower().replace(" ", "-")
        return [
            SearchResult(
                url=f"https://www.youtube.com/watch?v={slug}",
                title=f"Acme Plumbing {topic} walkthrough",
                snippet=f"Acme Plumbing shows {topic.lower()} step by step.",
                metadata={"views": "12,000", "date": "2026-02-01"},
            ),
            SearchResult(
                url=f"https://www.yelp.com/biz/acme-plumbing-{slug}",
                title="Acme Plumbing - Yelp",
                snippet=f"Reviews mentioning {topic.lower()}.",
            ),
            SearchResult(
                url=f"https://acmeplumbing.com/{slug}",
                title="Own site result",
                snippet="Should be excluded",
            ),
        ]


class FakeNotifier(NotificationService):
    def __init__(self):
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def send(self, recipient: str, template_id: str, data: dict[str, Any]) -> bool:
        self.sent.append((recipient, template_id, data))
        return True


class FakeReporter:
    """Stands in for ProgressReporter in step unit tests."""

    def __init__(self):
        self.reports: list[tuple[int, str, int]] = []

    async def report(self, job_id, step_index, substep_label, percentage, token=None) -> bool:
        self.reports.append((step_index, substep_label, percentage))
        return True


# =============================================================================
# Database & harness
# =============================================================================


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "database_url": "sqlite+aiosqlite://",
        "step_timeout_seconds": 30,
        "lock_stale_after_seconds": 300,
        "invocation_timeout_seconds": 60,
        "crawler_max_pages": 10,
        "crawler_progress_every": 2,
        "search_request_delay": 0,
        "max_clusters": 3,
        "poll_batch_size": 20,
        "poll_fan_out": 4,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite file per test; the busy timeout lets concurrent writers queue."""
    eng = create_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'citescan.db'}",
        connect_args={"timeout": 30},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_maker(engine)


@pytest.fixture
def store(session_maker, clock) -> JobStore:
    return JobStore(session_maker, clock=clock)


@pytest.fixture
def lock_manager(store, settings, clock) -> LockManager:
    return LockManager(store, timedelta(seconds=settings.lock_stale_after_seconds), clock=clock)


@pytest.fixture
def collaborators() -> Collaborators:
    return Collaborators(
        crawler=FakeCrawler(),
        analyzer=FakeAnalyzer(),
        search=FakeSearch(),
        notifier=FakeNotifier(),
    )


@dataclass
class Harness:
    store: JobStore
    lock_manager: LockManager
    controller: PipelineController
    scheduler: Scheduler
    collaborators: Collaborators
    clock: FakeClock
    settings: Settings
    seen_progress: list[int] = field(default_factory=list)

    async def run_step(self, job_id: int):
        """Claim the job and advance it once, like one tick would."""
        token = await self.lock_manager.acquire(job_id)
        assert token is not None, "job should be claimable"
        return await self.controller.process(job_id, token)

    async def job(self, job_id: int):
        return await self.store.get_job(job_id)


@pytest.fixture
def harness(store, lock_manager, collaborators, clock, settings) -> Harness:
    controller = PipelineController(
        store,
        lock_manager,
        ProgressReporter(store),
        collaborators,
        settings=settings,
        clock=clock,
    )
    scheduler = Scheduler(store, lock_manager, controller, settings=settings)
    return Harness(store, lock_manager, controller, scheduler, collaborators, clock, settings)


@pytest_asyncio.fixture
async def project(store):
    return await store.create_project(
        name="Acme Plumbing",
        domain="acmeplumbing.com",
        manual_urls=["https://www.linkedin.com/company/acme-plumbing"],
        notify_email="owner@acmeplumbing.com",
    )


@pytest_asyncio.fixture
async def scan_job(store, project):
    """(scan, job) for a freshly created scan."""
    return await store.create_scan(project.id)
