"""
Step 00: Crawl

Fetches the project's website through the crawl collaborator.

What it does:
- Streams pages breadth-first from the project's domain
- Reports progress every CRAWLER_PROGRESS_EVERY pages
- Records URL, title, headings, a content excerpt and outbound links per page

Failure handling:
- Unreachable domain: fatal, the job fails without retries
- Timeout / rate limit: retryable
- Zero pages crawled: permanent, the retry policy gives up at once

Output:
- CrawlOutput with every fetched page
"""

from citescan.core.exceptions import DomainUnreachableError, PermanentInputError
from citescan.core.models import PipelineStep
from citescan.jobs.outputs import CrawledPage, CrawlOutput
from citescan.jobs.steps.base import BaseStep, StepContext
from citescan.services.url_utils import extract_domain


class CrawlStep(BaseStep):
    step = PipelineStep.CRAWL
    label = "Crawl"
    description = "Crawling website..."
    fatal_errors = (DomainUnreachableError,)

    async def run(self, ctx: StepContext) -> CrawlOutput:
        domain = extract_domain(ctx.project.domain) or ctx.project.domain
        every = max(1, ctx.settings.crawler_progress_every)
        expected = max(1, ctx.settings.crawler_max_pages)

        pages: list[CrawledPage] = []
        async for page in ctx.collaborators.crawler.crawl(domain):
            pages.append(page)
            if len(pages) % every == 0:
                await ctx.progress.update(f"Crawled {len(pages)} pages", len(pages) / expected)

        if not pages:
            raise PermanentInputError(f"No pages could be crawled on {domain}")

        self.log.info("Crawl finished", job_id=ctx.job_id, domain=domain, pages=len(pages))
        return CrawlOutput(domain=domain, pages=pages)
