"""
Step 01: Analyze

Turns the crawled site into topical clusters, each with one scored hub page.

What it does:
1. Ask the analysis collaborator for business-priority topics, reading the
   homepage and services-like pages (at most MAX_CLUSTERS topics)
2. Match every crawled page to each topic and pick the hub
   (0.6 keyword match + 0.4 content similarity, shortest path wins ties)
3. Ask the analysis collaborator to score each hub on clarity, structure,
   depth and authority (0-25 each)

The step is all-or-nothing: any missing or malformed judgment fails the
attempt and the next attempt starts over from the crawl output.

Output:
- AnalyzeOutput with one Cluster per topic
"""

from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from citescan.core.exceptions import MalformedResponseError
from citescan.core.models import PipelineStep
from citescan.jobs.outputs import (
    HUB_DIMENSIONS,
    AnalyzeOutput,
    Cluster,
    CrawledPage,
    CrawlOutput,
    DimensionScore,
    HubPage,
    require_step_output,
)
from citescan.jobs.steps.base import BaseStep, StepContext
from citescan.services.prompts import HUB_SCORE_PROMPT, TOPICS_PROMPT
from citescan.services.scoring import select_hub
from citescan.services.url_utils import path_depth, path_of

SERVICE_PATH_HINTS = (
    "service", "product", "solution", "offering", "what-we-do", "practice",
    "pricing", "features", "capabilities", "expertise",
)
MAX_TOPIC_SOURCE_PAGES = 8
PAGE_CHARS = 1500

# Share of the step's band spent before hub scoring starts
TOPICS_DONE_FRACTION = 0.2


class TopicJudgment(BaseModel):
    topic: str = Field(min_length=1)
    keywords: list[str] = Field(default_factory=list)
    priority: int = 0

    @field_validator("topic")
    @classmethod
    def strip_topic(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("topic cannot be blank")
        return v

    @field_validator("keywords")
    @classmethod
    def clean_keywords(cls, v: list[str]) -> list[str]:
        return [k.strip().lower() for k in v if k and k.strip()]


class TopicsJudgment(BaseModel):
    topics: list[TopicJudgment] = Field(min_length=1)


class HubScoreJudgment(BaseModel):
    scores: dict[str, DimensionScore]

    @field_validator("scores")
    @classmethod
    def require_dimensions(cls, v: dict[str, DimensionScore]) -> dict[str, DimensionScore]:
        missing = [d for d in HUB_DIMENSIONS if d not in v]
        if missing:
            raise ValueError(f"missing dimensions: {', '.join(missing)}")
        return {d: v[d] for d in HUB_DIMENSIONS}


def _validate(model: type[BaseModel], raw: dict[str, Any], what: str) -> Any:
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise MalformedResponseError(
            f"Malformed {what} judgment: {e.error_count()} error(s)",
            details={"errors": e.errors(include_url=False)[:5]},
        ) from e


def topic_source_pages(pages: list[CrawledPage]) -> list[CrawledPage]:
    """Homepage first, then services-like pages, capped."""
    ordered = sorted(pages, key=lambda p: (path_depth(p.url), len(p.url)))
    homepage = ordered[:1]
    services = [
        p for p in ordered[1:]
        if any(hint in path_of(p.url).lower() for hint in SERVICE_PATH_HINTS)
    ]
    chosen = homepage + services
    if len(chosen) < 2:
        # No services section; fall back to the shallowest pages
        chosen = ordered
    return chosen[:MAX_TOPIC_SOURCE_PAGES]


def render_page(page: CrawledPage, chars: int = PAGE_CHARS) -> str:
    headings = " | ".join(page.headings[:10])
    return (
        f"URL: {page.url}\n"
        f"Title: {page.title or ''}\n"
        f"Headings: {headings}\n"
        f"Text: {page.content_excerpt[:chars]}"
    )


class AnalyzeStep(BaseStep):
    step = PipelineStep.ANALYZE
    label = "Analyze"
    description = "Identifying topics..."

    async def run(self, ctx: StepContext) -> AnalyzeOutput:
        crawl: CrawlOutput = require_step_output(ctx.outputs, PipelineStep.CRAWL)
        analyzer = ctx.collaborators.analyzer

        topics = await self._derive_topics(ctx, crawl)
        await ctx.progress.update(f"Found {len(topics)} topics", TOPICS_DONE_FRACTION)

        clusters: list[Cluster] = []
        for i, topic in enumerate(topics):
            hub_page, relevance, matched = select_hub(topic.topic, topic.keywords, crawl.pages)

            await ctx.progress.update(
                f"Scoring hub page for {topic.topic}",
                TOPICS_DONE_FRACTION + (1 - TOPICS_DONE_FRACTION) * i / len(topics),
            )
            raw = await analyzer.analyze(
                HUB_SCORE_PROMPT.format(topic=topic.topic),
                render_page(hub_page, chars=len(hub_page.content_excerpt)),
            )
            judged: HubScoreJudgment = _validate(HubScoreJudgment, raw, "hub score")

            clusters.append(
                Cluster(
                    topic=topic.topic,
                    keywords=topic.keywords,
                    priority=topic.priority or i + 1,
                    page_urls=matched,
                    hub=HubPage(
                        url=hub_page.url,
                        title=hub_page.title,
                        relevance=relevance,
                        scores=judged.scores,
                    ),
                )
            )

        self.log.info("Analysis finished", job_id=ctx.job_id, clusters=len(clusters))
        return AnalyzeOutput(clusters=clusters)

    async def _derive_topics(self, ctx: StepContext, crawl: CrawlOutput) -> list[TopicJudgment]:
        sources = topic_source_pages(crawl.pages)
        prompt = TOPICS_PROMPT.format(
            business_name=ctx.project.name,
            domain=crawl.domain,
            max_clusters=ctx.settings.max_clusters,
        )
        raw = await ctx.collaborators.analyzer.analyze(
            prompt, "\n\n---\n\n".join(render_page(p) for p in sources)
        )
        judged: TopicsJudgment = _validate(TopicsJudgment, raw, "topics")

        unique: list[TopicJudgment] = []
        seen: set[str] = set()
        for topic in sorted(judged.topics, key=lambda t: t.priority or len(judged.topics)):
            key = topic.topic.lower()
            if key in seen:
                continue
            seen.add(key)
            if not topic.keywords:
                topic.keywords = [key]
            unique.append(topic)
        return unique[: ctx.settings.max_clusters]
