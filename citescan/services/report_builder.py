"""
Summary artifact and audit report assembly.

The summary artifact follows the llms.txt convention: an H1 with the
business name, a blockquote description, then H2 sections of Markdown link
lists. The audit report carries per-cluster scores and recommendations
bucketed by how far a dimension is from the maximum.
"""

from collections import defaultdict

from citescan.jobs.outputs import (
    DIMENSION_MAX,
    HUB_DIMENSIONS,
    AnalyzeOutput,
    AuditReport,
    AuthoritySignals,
    ClusterReport,
    CrawlOutput,
    DiscoverOutput,
    Recommendation,
)
from citescan.services.url_utils import path_depth

HIGH_GAP = 15
MEDIUM_GAP = 8
PRIORITIES = ("high", "medium", "low")
MAX_RELATED_LINKS = 5


def priority_for_gap(gap: int) -> str | None:
    """Bucket a dimension's distance from the maximum; None when there is nothing to fix."""
    if gap >= HIGH_GAP:
        return "high"
    if gap >= MEDIUM_GAP:
        return "medium"
    if gap > 0:
        return "low"
    return None


def build_recommendations(analyze: AnalyzeOutput) -> dict[str, list[Recommendation]]:
    buckets: dict[str, list[Recommendation]] = {p: [] for p in PRIORITIES}
    for cluster in analyze.clusters:
        for dimension in HUB_DIMENSIONS:
            dim = cluster.hub.scores.get(dimension)
            if dim is None:
                continue
            gap = DIMENSION_MAX - dim.score
            priority = priority_for_gap(gap)
            if priority is None:
                continue
            text = (
                dim.recommendations[0]
                if dim.recommendations
                else f"Improve {dimension} of {cluster.hub.url} for \"{cluster.topic}\""
            )
            buckets[priority].append(
                Recommendation(
                    cluster_topic=cluster.topic,
                    dimension=dimension,
                    score=dim.score,
                    gap=gap,
                    priority=priority,
                    text=text,
                )
            )

    for items in buckets.values():
        items.sort(key=lambda r: (-r.gap, r.cluster_topic, r.dimension))
    return buckets


def build_audit_report(
    analyze: AnalyzeOutput,
    discover: DiscoverOutput,
    signals: AuthoritySignals,
) -> AuditReport:
    offsite_by_topic: dict[str, list[str]] = defaultdict(list)
    for item in discover.items:
        offsite_by_topic[item.cluster_topic].append(item.url)

    clusters = [
        ClusterReport(
            topic=cluster.topic,
            hub_url=cluster.hub.url,
            total_score=cluster.hub.total,
            scores={name: dim.score for name, dim in cluster.hub.scores.items()},
            offsite_urls=offsite_by_topic.get(cluster.topic, []),
        )
        for cluster in analyze.clusters
    ]
    overall = round(sum(c.total_score for c in clusters) / len(clusters)) if clusters else 0

    return AuditReport(
        overall_score=overall,
        clusters=clusters,
        recommendations=build_recommendations(analyze),
        authority_signals=signals,
    )


def _link(title: str | None, url: str) -> str:
    label = (title or url).replace("[", "(").replace("]", ")")
    return f"[{label}]({url})"


def _description(crawl: CrawlOutput, business_name: str) -> str:
    homepage = min(crawl.pages, key=lambda p: (path_depth(p.url), len(p.url)), default=None)
    if homepage is not None:
        for candidate in (homepage.headings[:1] or []) + [homepage.title or ""]:
            if candidate.strip():
                return candidate.strip()
    return f"{business_name} on {crawl.domain}"


def render_summary_markdown(
    business_name: str,
    crawl: CrawlOutput,
    analyze: AnalyzeOutput,
    discover: DiscoverOutput,
    signals: AuthoritySignals,
) -> str:
    titles = {page.url: page.title for page in crawl.pages}
    lines = [f"# {business_name}", "", f"> {_description(crawl, business_name)}", ""]

    if analyze.clusters:
        lines += ["## Topics", ""]
        for cluster in analyze.clusters:
            lines.append(f"### {cluster.topic}")
            lines.append("")
            lines.append(f"- {_link(cluster.hub.title, cluster.hub.url)}: primary page for {cluster.topic}")
            related = [u for u in cluster.page_urls if u != cluster.hub.url][:MAX_RELATED_LINKS]
            lines.extend(f"- {_link(titles.get(url), url)}" for url in related)
            lines.append("")

    if discover.items:
        lines += ["## Elsewhere on the web", ""]
        for item in discover.items:
            suffix = f" ({item.platform})" if item.platform else ""
            lines.append(f"- {_link(item.title, item.url)}{suffix}: {item.cluster_topic}")
        lines.append("")

    facts = signals.credentials + signals.awards + signals.tenure
    if facts:
        lines += ["## About", ""]
        lines.extend(f"- {fact}" for fact in facts)
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
