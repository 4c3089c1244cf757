"""
Pipeline Step Executors

Pipeline (one step per controller invocation):
    step_00: Crawl     - Fetch the project's website
    step_01: Analyze   - Topics, hub pages and hub scores
    step_02: Discover  - Off-site content per topic
    step_03: Finalize  - Authority signals, audit report, summary artifact
"""

from citescan.core.models import PipelineStep
from citescan.jobs.steps.base import (
    BaseStep,
    Collaborators,
    StepContext,
    StepFatal,
    StepResult,
    StepRetryable,
    StepSuccess,
)
from citescan.jobs.steps.step_00_crawl import CrawlStep
from citescan.jobs.steps.step_01_analyze import AnalyzeStep
from citescan.jobs.steps.step_02_discover import DiscoverStep
from citescan.jobs.steps.step_03_finalize import FinalizeStep

# Every PipelineStep has exactly one executor
STEP_EXECUTORS: dict[PipelineStep, BaseStep] = {
    PipelineStep.CRAWL: CrawlStep(),
    PipelineStep.ANALYZE: AnalyzeStep(),
    PipelineStep.DISCOVER: DiscoverStep(),
    PipelineStep.FINALIZE: FinalizeStep(),
}

if set(STEP_EXECUTORS) != set(PipelineStep):
    raise RuntimeError("STEP_EXECUTORS must cover every PipelineStep")

__all__ = [
    "BaseStep",
    "Collaborators",
    "StepContext",
    "StepResult",
    "StepSuccess",
    "StepRetryable",
    "StepFatal",
    "CrawlStep",
    "AnalyzeStep",
    "DiscoverStep",
    "FinalizeStep",
    "STEP_EXECUTORS",
]
