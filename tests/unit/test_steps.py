"""
Unit tests for the step executors, run against fake collaborators.
"""

from typing import Any

import pytest

from citescan.core.exceptions import (
    CollaboratorTimeoutError,
    DomainUnreachableError,
    MalformedResponseError,
    PermanentInputError,
    RateLimitedError,
)
from citescan.core.models import CandidateSource, FailureKind, PipelineStep
from citescan.db.models import ProjectModel
from citescan.jobs.outputs import (
    AnalyzeOutput,
    Cluster,
    CrawlOutput,
    DiscoverOutput,
    FinalizeOutput,
    HubPage,
    StepOutput,
    merge_step_output,
)
from citescan.jobs.progress import StepProgress
from citescan.jobs.steps import (
    STEP_EXECUTORS,
    AnalyzeStep,
    BaseStep,
    Collaborators,
    CrawlStep,
    DiscoverStep,
    FinalizeStep,
    StepContext,
    StepFatal,
    StepRetryable,
    StepSuccess,
)
from citescan.services.search_engine import SearchResult
from tests.conftest import (
    FakeAnalyzer,
    FakeClock,
    FakeCrawler,
    FakeNotifier,
    FakeReporter,
    FakeSearch,
    make_settings,
    site_pages,
)

pytestmark = pytest.mark.asyncio


def make_ctx(
    step: PipelineStep,
    outputs: dict[str, Any] | None = None,
    collaborators: Collaborators | None = None,
    **settings_overrides: Any,
) -> tuple[StepContext, FakeReporter]:
    reporter = FakeReporter()
    project = ProjectModel(
        id=1,
        name="Acme Plumbing",
        domain="https://www.acmeplumbing.com",
        manual_urls=["https://www.linkedin.com/company/acme-plumbing"],
        notify_email="owner@acmeplumbing.com",
    )
    ctx = StepContext(
        job_id=1,
        scan_id=1,
        project=project,
        outputs=outputs or {},
        step_attempt=1,
        progress=StepProgress(reporter, 1, step),
        collaborators=collaborators
        or Collaborators(FakeCrawler(), FakeAnalyzer(), FakeSearch(), FakeNotifier()),
        settings=make_settings(**settings_overrides),
        clock=FakeClock(),
    )
    return ctx, reporter


async def _run_through(step: PipelineStep, ctx_collaborators: Collaborators) -> dict[str, Any]:
    """Output bag with every step before `step` completed."""
    bag: dict[str, Any] = {}
    for earlier in PipelineStep:
        if earlier is step:
            break
        ctx, _ = make_ctx(earlier, bag, ctx_collaborators)
        result = await STEP_EXECUTORS[earlier].execute(ctx)
        assert isinstance(result, StepSuccess), result
        bag = merge_step_output(bag, earlier, result.output)
    return bag


class RaisingStep(BaseStep):
    step = PipelineStep.CRAWL
    label = "Raising"
    fatal_errors = (DomainUnreachableError,)

    def __init__(self, error: Exception):
        super().__init__()
        self.error = error

    async def run(self, ctx: StepContext) -> StepOutput:
        raise self.error


# =========================================================================
# Exception mapping
# =========================================================================


class TestExecuteMapping:
    @pytest.mark.parametrize(
        "error,kind",
        [
            (RateLimitedError("slow down"), FailureKind.TRANSIENT),
            (CollaboratorTimeoutError("timeout"), FailureKind.TRANSIENT),
            (MalformedResponseError("bad json"), FailureKind.TRANSIENT),
            (PermanentInputError("bad input"), FailureKind.PERMANENT),
            (KeyError("surprise"), FailureKind.UNKNOWN),
        ],
    )
    async def test_exceptions_become_retryable(self, error, kind):
        ctx, _ = make_ctx(PipelineStep.CRAWL)
        result = await RaisingStep(error).execute(ctx)

        assert isinstance(result, StepRetryable)
        assert result.kind is kind
        assert result.message.startswith("Raising:")

    async def test_fatal_errors_become_fatal(self):
        ctx, _ = make_ctx(PipelineStep.CRAWL)
        result = await RaisingStep(DomainUnreachableError("no such host")).execute(ctx)

        assert result == StepFatal("no such host")

    async def test_every_step_has_an_executor(self):
        assert set(STEP_EXECUTORS) == set(PipelineStep)
        assert all(STEP_EXECUTORS[s].step is s for s in PipelineStep)


# =========================================================================
# Crawl
# =========================================================================


class TestCrawlStep:
    async def test_collects_pages_and_reports_progress(self):
        crawler = FakeCrawler()
        ctx, reporter = make_ctx(
            PipelineStep.CRAWL,
            collaborators=Collaborators(crawler, FakeAnalyzer(), FakeSearch(), FakeNotifier()),
        )
        result = await CrawlStep().execute(ctx)

        assert isinstance(result, StepSuccess)
        assert isinstance(result.output, CrawlOutput)
        assert result.output.domain == "acmeplumbing.com"
        assert len(result.output.pages) == 5
        assert crawler.calls == ["acmeplumbing.com"]
        # Start label, then every 2 pages (progress_every=2)
        assert [label for _, label, _ in reporter.reports] == [
            "Crawling website...",
            "Crawled 2 pages",
            "Crawled 4 pages",
        ]
        assert all(0 <= pct < 15 for _, _, pct in reporter.reports)

    async def test_unreachable_domain_is_fatal(self):
        crawler = FakeCrawler(error=DomainUnreachableError("Domain acmeplumbing.com is unreachable"))
        ctx, _ = make_ctx(
            PipelineStep.CRAWL,
            collaborators=Collaborators(crawler, FakeAnalyzer(), FakeSearch(), FakeNotifier()),
        )
        assert isinstance(await CrawlStep().execute(ctx), StepFatal)

    async def test_rate_limit_is_retryable(self):
        crawler = FakeCrawler(error=RateLimitedError("429"))
        ctx, _ = make_ctx(
            PipelineStep.CRAWL,
            collaborators=Collaborators(crawler, FakeAnalyzer(), FakeSearch(), FakeNotifier()),
        )
        result = await CrawlStep().execute(ctx)
        assert isinstance(result, StepRetryable)
        assert result.kind is FailureKind.TRANSIENT

    async def test_zero_pages_is_permanent(self):
        ctx, _ = make_ctx(
            PipelineStep.CRAWL,
            collaborators=Collaborators(FakeCrawler(pages=[]), FakeAnalyzer(), FakeSearch(), FakeNotifier()),
        )
        result = await CrawlStep().execute(ctx)
        assert isinstance(result, StepRetryable)
        assert result.kind is FailureKind.PERMANENT


# =========================================================================
# Analyze
# =========================================================================


class TestAnalyzeStep:
    async def test_builds_clusters_with_scored_hubs(self):
        collaborators = Collaborators(FakeCrawler(), FakeAnalyzer(), FakeSearch(), FakeNotifier())
        bag = await _run_through(PipelineStep.ANALYZE, collaborators)
        ctx, reporter = make_ctx(PipelineStep.ANALYZE, bag, collaborators)

        result = await AnalyzeStep().execute(ctx)

        assert isinstance(result, StepSuccess)
        output: AnalyzeOutput = result.output
        assert [c.topic for c in output.clusters] == ["Drain Cleaning", "Water Heater Repair"]
        assert output.clusters[0].hub.url == "https://acmeplumbing.com/services/drain-cleaning"
        assert output.clusters[1].hub.url == "https://acmeplumbing.com/services/water-heaters"
        assert output.clusters[0].hub.total == 48
        assert all(15 <= pct < 55 for _, _, pct in reporter.reports)

    async def test_topics_are_capped(self):
        analyzer = FakeAnalyzer()
        analyzer.responses["topics"] = {
            "topics": [{"topic": f"Topic {i}", "keywords": [f"topic {i}"], "priority": i} for i in range(1, 6)]
        }
        collaborators = Collaborators(FakeCrawler(), analyzer, FakeSearch(), FakeNotifier())
        bag = await _run_through(PipelineStep.ANALYZE, collaborators)
        ctx, _ = make_ctx(PipelineStep.ANALYZE, bag, collaborators, max_clusters=2)

        result = await AnalyzeStep().execute(ctx)
        assert [c.topic for c in result.output.clusters] == ["Topic 1", "Topic 2"]

    async def test_missing_dimension_fails_whole_step(self):
        analyzer = FakeAnalyzer()
        scores = analyzer.responses["hub"]["scores"]
        analyzer.responses["hub"] = {"scores": {k: v for k, v in scores.items() if k != "depth"}}
        collaborators = Collaborators(FakeCrawler(), analyzer, FakeSearch(), FakeNotifier())
        bag = await _run_through(PipelineStep.ANALYZE, collaborators)
        ctx, _ = make_ctx(PipelineStep.ANALYZE, bag, collaborators)

        result = await AnalyzeStep().execute(ctx)
        assert isinstance(result, StepRetryable)
        assert result.kind is FailureKind.TRANSIENT

    async def test_out_of_range_score_is_malformed(self):
        analyzer = FakeAnalyzer()
        analyzer.responses["hub"]["scores"]["clarity"]["score"] = 40
        collaborators = Collaborators(FakeCrawler(), analyzer, FakeSearch(), FakeNotifier())
        bag = await _run_through(PipelineStep.ANALYZE, collaborators)
        ctx, _ = make_ctx(PipelineStep.ANALYZE, bag, collaborators)

        result = await AnalyzeStep().execute(ctx)
        assert isinstance(result, StepRetryable)

    async def test_unknown_crawl_version_is_retryable(self):
        bag = {"crawl": {"version": 99, "domain": "a.com", "pages": []}}
        ctx, _ = make_ctx(PipelineStep.ANALYZE, bag)

        result = await AnalyzeStep().execute(ctx)
        assert isinstance(result, StepRetryable)
        assert result.kind is FailureKind.UNKNOWN


# =========================================================================
# Discover
# =========================================================================


class TestDiscoverStep:
    async def test_collects_scores_and_ranks_candidates(self):
        search = FakeSearch()
        collaborators = Collaborators(FakeCrawler(), FakeAnalyzer(), search, FakeNotifier())
        bag = await _run_through(PipelineStep.DISCOVER, collaborators)
        ctx, reporter = make_ctx(PipelineStep.DISCOVER, bag, collaborators)

        result = await DiscoverStep().execute(ctx)

        assert isinstance(result, StepSuccess)
        output: DiscoverOutput = result.output
        assert search.queries == ['"Acme Plumbing" Drain Cleaning', '"Acme Plumbing" Water Heater Repair']
        urls = [i.url for i in output.items]
        assert not any("acmeplumbing.com" in u for u in urls)

        drain = [i for i in output.items if i.cluster_topic == "Drain Cleaning"]
        assert 3 <= len(drain) <= 5
        assert drain[0].url == "https://www.youtube.com/watch?v=drain-cleaning"
        assert drain[0].source is CandidateSource.SEARCH
        assert drain[0].platform == "YouTube"
        totals = [i.total for i in drain]
        assert totals == sorted(totals, reverse=True)
        assert all(55 <= pct < 80 for _, _, pct in reporter.reports)

    async def test_duplicate_keeps_strongest_source(self):
        url = "https://www.youtube.com/@acmeplumbing"
        search = FakeSearch(
            results={
                '"Acme Plumbing" Drain Cleaning': [
                    SearchResult(url=url + "/", title="Acme Plumbing on YouTube", snippet="Drain cleaning videos"),
                ],
            }
        )
        collaborators = Collaborators(FakeCrawler(), FakeAnalyzer(), search, FakeNotifier())
        bag = await _run_through(PipelineStep.DISCOVER, collaborators)
        ctx, _ = make_ctx(PipelineStep.DISCOVER, bag, collaborators)

        result = await DiscoverStep().execute(ctx)

        drain = [i for i in result.output.items if i.cluster_topic == "Drain Cleaning"]
        matches = [i for i in drain if i.url.rstrip("/") == url]
        assert len(matches) == 1
        assert matches[0].source is CandidateSource.SEARCH
        assert matches[0].title == "Acme Plumbing on YouTube"

    async def test_manual_url_beats_search_and_keeps_its_title(self):
        url = "https://www.linkedin.com/company/acme-plumbing"
        search = FakeSearch(
            results={
                '"Acme Plumbing" Drain Cleaning': [
                    SearchResult(url=url, title="Acme Plumbing | LinkedIn", snippet="Drain cleaning experts"),
                ],
            }
        )
        collaborators = Collaborators(FakeCrawler(), FakeAnalyzer(), search, FakeNotifier())
        bag = await _run_through(PipelineStep.DISCOVER, collaborators)
        ctx, _ = make_ctx(PipelineStep.DISCOVER, bag, collaborators)

        result = await DiscoverStep().execute(ctx)

        drain = [i for i in result.output.items if i.cluster_topic == "Drain Cleaning"]
        matches = [i for i in drain if i.url == url]
        assert len(matches) == 1
        assert matches[0].source is CandidateSource.MANUAL
        assert matches[0].title == "Acme Plumbing | LinkedIn"

    async def test_links_come_from_hub_and_homepage_too(self):
        crawl = CrawlOutput(domain="acmeplumbing.com", pages=site_pages())
        cluster = Cluster(
            topic="Water Heater Repair",
            keywords=["water heater"],
            page_urls=["https://acmeplumbing.com/services/water-heaters"],
            hub=HubPage(url="https://acmeplumbing.com/services/drain-cleaning", scores={}),
        )
        collaborators = Collaborators(FakeCrawler(), FakeAnalyzer(), FakeSearch(results={}), FakeNotifier())
        ctx, _ = make_ctx(PipelineStep.DISCOVER, {}, collaborators)

        pool = await DiscoverStep()._collect(ctx, crawl, cluster)

        links = sorted(c.url for c in pool.values() if c.source is CandidateSource.LINK)
        assert links == [
            "https://www.reddit.com/r/Plumbing/comments/abc/drain_cleaning_tips",
            "https://www.youtube.com/@acmeplumbing",
        ]

    async def test_search_failure_is_retryable(self):
        class FailingSearch(FakeSearch):
            async def search(self, query, max_results=10):
                raise RateLimitedError("Search rate limited")

        collaborators = Collaborators(FakeCrawler(), FakeAnalyzer(), FakeSearch(), FakeNotifier())
        bag = await _run_through(PipelineStep.DISCOVER, collaborators)
        collaborators.search = FailingSearch()
        ctx, _ = make_ctx(PipelineStep.DISCOVER, bag, collaborators)

        result = await DiscoverStep().execute(ctx)
        assert isinstance(result, StepRetryable)
        assert result.kind is FailureKind.TRANSIENT


# =========================================================================
# Finalize
# =========================================================================


class TestFinalizeStep:
    async def test_assembles_report_and_summary(self):
        collaborators = Collaborators(FakeCrawler(), FakeAnalyzer(), FakeSearch(), FakeNotifier())
        bag = await _run_through(PipelineStep.FINALIZE, collaborators)
        ctx, reporter = make_ctx(PipelineStep.FINALIZE, bag, collaborators)

        result = await FinalizeStep().execute(ctx)

        assert isinstance(result, StepSuccess)
        output: FinalizeOutput = result.output
        assert output.summary_markdown.startswith("# Acme Plumbing")
        assert output.report.overall_score == 48
        signals = output.report.authority_signals
        assert [c.lower() for c in signals.credentials] == ["licensed master plumber"]
        assert "Serving Springfield since 1998" in signals.tenure
        assert signals.source_urls == ["https://acmeplumbing.com/about"]
        assert all(80 <= pct < 100 for _, _, pct in reporter.reports)

    async def test_completion_notice_sent_after_commit(self):
        notifier = FakeNotifier()
        collaborators = Collaborators(FakeCrawler(), FakeAnalyzer(), FakeSearch(), notifier)
        bag = await _run_through(PipelineStep.FINALIZE, collaborators)
        ctx, _ = make_ctx(PipelineStep.FINALIZE, bag, collaborators)
        step = FinalizeStep()

        result = await step.execute(ctx)
        assert notifier.sent == []

        await step.after_commit(ctx, result.output)
        assert notifier.sent[0][0] == "owner@acmeplumbing.com"
        assert notifier.sent[0][1] == "scan_complete"
        assert notifier.sent[0][2]["overall_score"] == 48
