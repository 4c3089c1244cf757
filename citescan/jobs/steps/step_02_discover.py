"""
Step 02: Discover

Finds and scores off-site content for every cluster.

Candidate sources, strongest first:
- manual: the project's manually entered URLs
- search: "<business name>" <topic> through the discovery collaborator
- link: outbound links to known platforms from the cluster's pages,
  its hub and the homepage

Own-domain URLs are excluded and duplicates within a cluster keep the
strongest source. Each cluster keeps its top candidates by total score.

Output:
- DiscoverOutput with the kept items of all clusters
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from citescan.core.models import CandidateSource, PipelineStep
from citescan.jobs.outputs import (
    AnalyzeOutput,
    Cluster,
    CrawlOutput,
    DiscoverOutput,
    OffsiteItem,
    require_step_output,
)
from citescan.jobs.steps.base import BaseStep, StepContext
from citescan.services.scoring import rank_offsite, score_candidate
from citescan.services.url_utils import detect_platform, is_same_site, normalize_url, path_depth

SOURCE_RANK = {
    CandidateSource.MANUAL: 0,
    CandidateSource.SEARCH: 1,
    CandidateSource.LINK: 2,
}


@dataclass
class Candidate:
    url: str
    source: CandidateSource
    title: str = ""
    snippet: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


def add_candidate(pool: dict[str, Candidate], candidate: Candidate) -> None:
    """Insert into a per-cluster pool keyed by normalized URL; the stronger source wins."""
    key = normalize_url(candidate.url)
    existing = pool.get(key)
    if existing is None:
        pool[key] = candidate
        return
    if SOURCE_RANK[candidate.source] < SOURCE_RANK[existing.source]:
        candidate.title = candidate.title or existing.title
        candidate.snippet = candidate.snippet or existing.snippet
        candidate.metadata = {**existing.metadata, **candidate.metadata}
        pool[key] = candidate
    else:
        existing.title = existing.title or candidate.title
        existing.snippet = existing.snippet or candidate.snippet


def build_query(business_name: str, topic: str) -> str:
    return f'"{business_name}" {topic}'


def link_source_pages(crawl: CrawlOutput, cluster: Cluster) -> set[str]:
    """Pages whose outbound links feed a cluster: its matched pages, its hub and the homepage."""
    pages = set(cluster.page_urls)
    pages.add(cluster.hub.url)
    if crawl.pages:
        pages.add(min(crawl.pages, key=lambda p: path_depth(p.url)).url)
    return pages


class DiscoverStep(BaseStep):
    step = PipelineStep.DISCOVER
    label = "Discover"
    description = "Discovering off-site content..."

    async def run(self, ctx: StepContext) -> DiscoverOutput:
        crawl: CrawlOutput = require_step_output(ctx.outputs, PipelineStep.CRAWL)
        analyze: AnalyzeOutput = require_step_output(ctx.outputs, PipelineStep.ANALYZE)
        settings = ctx.settings
        now = ctx.clock()

        items: list[OffsiteItem] = []
        clusters = analyze.clusters
        for i, cluster in enumerate(clusters):
            await ctx.progress.update(f"Searching off-site content for {cluster.topic}", i / len(clusters))
            if i > 0 and settings.search_request_delay > 0:
                await asyncio.sleep(settings.search_request_delay)

            pool = await self._collect(ctx, crawl, cluster)
            scored = []
            for candidate in pool.values():
                platform, scores = score_candidate(
                    url=candidate.url,
                    title=candidate.title,
                    snippet=candidate.snippet,
                    metadata=candidate.metadata,
                    topic=cluster.topic,
                    keywords=cluster.keywords,
                    business_name=ctx.project.name,
                    now=now,
                )
                scored.append(
                    OffsiteItem(
                        cluster_topic=cluster.topic,
                        url=candidate.url,
                        title=candidate.title or None,
                        snippet=candidate.snippet or None,
                        platform=platform,
                        source=candidate.source,
                        scores=scores,
                    )
                )

            kept = rank_offsite(
                scored,
                min_keep=settings.offsite_min_per_cluster,
                max_keep=settings.offsite_max_per_cluster,
                min_total=settings.offsite_min_total,
            )
            self.log.debug(
                "Cluster discovery done",
                job_id=ctx.job_id,
                topic=cluster.topic,
                candidates=len(scored),
                kept=len(kept),
            )
            items.extend(kept)

        return DiscoverOutput(items=items)

    async def _collect(self, ctx: StepContext, crawl: CrawlOutput, cluster: Cluster) -> dict[str, Candidate]:
        domain = crawl.domain
        pool: dict[str, Candidate] = {}
        link_pages = link_source_pages(crawl, cluster)

        def admit(candidate: Candidate) -> None:
            if candidate.url.startswith(("http://", "https://")) and not is_same_site(candidate.url, domain):
                add_candidate(pool, candidate)

        for url in ctx.project.manual_urls or []:
            admit(Candidate(url=url, source=CandidateSource.MANUAL))

        results = await ctx.collaborators.search.search(
            build_query(ctx.project.name, cluster.topic),
            max_results=ctx.settings.search_max_results,
        )
        for r in results:
            admit(
                Candidate(
                    url=r.url,
                    source=CandidateSource.SEARCH,
                    title=r.title,
                    snippet=r.snippet,
                    metadata=r.metadata,
                )
            )

        for page in crawl.pages:
            if page.url not in link_pages:
                continue
            for link in page.outbound_links:
                if detect_platform(link) is not None:
                    admit(Candidate(url=link, source=CandidateSource.LINK))

        return pool
