"""
Typed step outputs.

The job row stores one JSON object keyed by step name. Each value carries a
schema version and is validated by the step's model on read, so a step never
consumes a shape it does not understand.
"""

from typing import Any, ClassVar, Literal

from pydantic import BaseModel, Field, ValidationError

from citescan.core.exceptions import OutputSchemaError
from citescan.core.models import CandidateSource, PipelineStep

HUB_DIMENSIONS = ("clarity", "structure", "depth", "authority")
DIMENSION_MAX = 25


class StepOutput(BaseModel):
    SCHEMA_VERSION: ClassVar[int] = 1

    version: int = 1


# =============================================================================
# Crawl
# =============================================================================


class CrawledPage(BaseModel):
    url: str
    title: str | None = None
    headings: list[str] = Field(default_factory=list)
    content_excerpt: str = ""
    outbound_links: list[str] = Field(default_factory=list)


class CrawlOutput(StepOutput):
    domain: str
    pages: list[CrawledPage]


# =============================================================================
# Analyze
# =============================================================================


class DimensionScore(BaseModel):
    score: int = Field(ge=0, le=DIMENSION_MAX)
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class HubPage(BaseModel):
    url: str
    title: str | None = None
    relevance: float = 0.0
    scores: dict[str, DimensionScore]

    @property
    def total(self) -> int:
        return sum(s.score for s in self.scores.values())


class Cluster(BaseModel):
    topic: str
    keywords: list[str] = Field(default_factory=list)
    priority: int = 0
    page_urls: list[str] = Field(default_factory=list)
    hub: HubPage


class AnalyzeOutput(StepOutput):
    clusters: list[Cluster]


# =============================================================================
# Discover
# =============================================================================


class OffsiteScores(BaseModel):
    relevance: int = Field(0, ge=0, le=25)
    salience: int = Field(0, ge=0, le=25)
    engagement: int = Field(0, ge=0, le=15)
    recency: int = Field(0, ge=0, le=10)
    authority: int = Field(0, ge=0, le=25)

    @property
    def total(self) -> int:
        return self.relevance + self.salience + self.engagement + self.recency + self.authority


class OffsiteItem(BaseModel):
    cluster_topic: str
    url: str
    title: str | None = None
    snippet: str | None = None
    platform: str | None = None
    source: CandidateSource
    scores: OffsiteScores

    @property
    def total(self) -> int:
        return self.scores.total


class DiscoverOutput(StepOutput):
    items: list[OffsiteItem]


# =============================================================================
# Finalize
# =============================================================================


class AuthoritySignals(BaseModel):
    credentials: list[str] = Field(default_factory=list)
    awards: list[str] = Field(default_factory=list)
    tenure: list[str] = Field(default_factory=list)
    source_urls: list[str] = Field(default_factory=list)


class Recommendation(BaseModel):
    cluster_topic: str
    dimension: str
    score: int
    gap: int
    priority: Literal["high", "medium", "low"]
    text: str


class ClusterReport(BaseModel):
    topic: str
    hub_url: str
    total_score: int
    scores: dict[str, int]
    offsite_urls: list[str] = Field(default_factory=list)


class AuditReport(BaseModel):
    overall_score: int
    clusters: list[ClusterReport]
    recommendations: dict[str, list[Recommendation]]
    authority_signals: AuthoritySignals


class FinalizeOutput(StepOutput):
    summary_markdown: str
    report: AuditReport


OUTPUT_MODELS: dict[PipelineStep, type[StepOutput]] = {
    PipelineStep.CRAWL: CrawlOutput,
    PipelineStep.ANALYZE: AnalyzeOutput,
    PipelineStep.DISCOVER: DiscoverOutput,
    PipelineStep.FINALIZE: FinalizeOutput,
}


def load_step_output(outputs: dict[str, Any] | None, step: PipelineStep) -> StepOutput | None:
    """Read and validate one step's entry from the output bag."""
    raw = (outputs or {}).get(step.key)
    if raw is None:
        return None

    model = OUTPUT_MODELS[step]
    version = raw.get("version")
    if version != model.SCHEMA_VERSION:
        raise OutputSchemaError(
            f"Unsupported {step.key} output version {version!r}",
            details={"expected": model.SCHEMA_VERSION},
        )
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise OutputSchemaError(f"Invalid {step.key} output: {e.error_count()} error(s)") from e


def require_step_output(outputs: dict[str, Any] | None, step: PipelineStep) -> StepOutput:
    output = load_step_output(outputs, step)
    if output is None:
        raise OutputSchemaError(f"Missing {step.key} output")
    return output


def merge_step_output(
    outputs: dict[str, Any] | None, step: PipelineStep, output: StepOutput
) -> dict[str, Any]:
    """Return a new output bag with this step's entry replaced."""
    if not isinstance(output, OUTPUT_MODELS[step]):
        raise OutputSchemaError(f"{type(output).__name__} is not a {step.key} output")
    return {**(outputs or {}), step.key: output.model_dump(mode="json")}
