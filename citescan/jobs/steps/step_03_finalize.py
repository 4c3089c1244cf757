"""
Step 03: Finalize

Assembles the deliverables from the earlier step outputs.

What it does:
- Extract authority signals (credentials, awards, tenure) from About/Team
  pages: regex patterns plus the analysis collaborator
- Build the audit report with recommendations bucketed by score gap
- Render the Markdown summary artifact

The controller persists scan completion and the new artifact version; the
completion notification goes out only after that commit.
"""

from pydantic import BaseModel, Field, ValidationError

from citescan.core.exceptions import MalformedResponseError
from citescan.core.models import PipelineStep
from citescan.jobs.outputs import (
    AnalyzeOutput,
    AuthoritySignals,
    CrawlOutput,
    DiscoverOutput,
    FinalizeOutput,
    StepOutput,
    require_step_output,
)
from citescan.jobs.steps.base import BaseStep, StepContext
from citescan.services.authority import extract_signals, is_about_page, merge_signals
from citescan.services.notifications import TEMPLATE_SCAN_COMPLETE
from citescan.services.prompts import AUTHORITY_PROMPT
from citescan.services.report_builder import build_audit_report, render_summary_markdown

MAX_ABOUT_PAGES = 5


class AuthorityJudgment(BaseModel):
    credentials: list[str] = Field(default_factory=list)
    awards: list[str] = Field(default_factory=list)
    tenure: list[str] = Field(default_factory=list)


class FinalizeStep(BaseStep):
    step = PipelineStep.FINALIZE
    label = "Finalize"
    description = "Assembling report..."

    async def run(self, ctx: StepContext) -> FinalizeOutput:
        crawl: CrawlOutput = require_step_output(ctx.outputs, PipelineStep.CRAWL)
        analyze: AnalyzeOutput = require_step_output(ctx.outputs, PipelineStep.ANALYZE)
        discover: DiscoverOutput = require_step_output(ctx.outputs, PipelineStep.DISCOVER)

        await ctx.progress.update("Extracting authority signals", 0.1)
        signals = await self._authority_signals(ctx, crawl)

        await ctx.progress.update("Building audit report", 0.6)
        report = build_audit_report(analyze, discover, signals)
        summary = render_summary_markdown(ctx.project.name, crawl, analyze, discover, signals)

        return FinalizeOutput(summary_markdown=summary, report=report)

    async def _authority_signals(self, ctx: StepContext, crawl: CrawlOutput) -> AuthoritySignals:
        about_pages = [p for p in crawl.pages if is_about_page(p)][:MAX_ABOUT_PAGES]
        signals = extract_signals(about_pages)
        if not about_pages:
            return signals

        content = "\n\n---\n\n".join(
            f"URL: {p.url}\n{' | '.join(p.headings)}\n{p.content_excerpt}" for p in about_pages
        )
        raw = await ctx.collaborators.analyzer.analyze(
            AUTHORITY_PROMPT.format(business_name=ctx.project.name), content
        )
        try:
            judged = AuthorityJudgment.model_validate(raw)
        except ValidationError as e:
            raise MalformedResponseError(f"Malformed authority judgment: {e.error_count()} error(s)") from e

        return merge_signals(
            signals,
            AuthoritySignals(
                credentials=judged.credentials,
                awards=judged.awards,
                tenure=judged.tenure,
                source_urls=[p.url for p in about_pages],
            ),
        )

    async def after_commit(self, ctx: StepContext, output: StepOutput) -> None:
        recipient = ctx.project.notify_email
        if not recipient or not isinstance(output, FinalizeOutput):
            return
        await ctx.collaborators.notifier.send(
            recipient,
            TEMPLATE_SCAN_COMPLETE,
            {
                "project": ctx.project.name,
                "scan_id": ctx.scan_id,
                "overall_score": output.report.overall_score,
            },
        )
