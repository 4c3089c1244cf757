"""
BFS Web Crawler (crawl collaborator).

Streams the pages of one site breadth-first so the crawl step can report
progress while pages are still arriving.
Features:
- robots.txt compliance via urllib.robotparser
- URL normalization for deduplication
- Depth- and page-limited traversal
- Title, headings, content excerpt and outbound links per page

Failure signals:
- DomainUnreachableError: the start page cannot be connected to at all
- CollaboratorTimeoutError / RateLimitedError: the site is slow or throttling
"""

import asyncio
import re
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import AsyncIterator
from urllib.parse import urljoin, urlparse

import httpx
import structlog
from bs4 import BeautifulSoup

from citescan.core.config import settings
from citescan.core.exceptions import (
    CollaboratorError,
    CollaboratorTimeoutError,
    DomainUnreachableError,
    RateLimitedError,
)
from citescan.jobs.outputs import CrawledPage
from citescan.services.url_utils import RobotsChecker, extract_domain, is_same_site, normalize_url

logger = structlog.get_logger()

STATUS_TOO_MANY_REQUESTS = 429

# Skip binary/document links when queueing internal pages
SKIP_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".zip",
    ".mp4", ".mp3", ".xlsx", ".xls", ".docx", ".doc", ".css", ".js",
)

# Irrelevant path segments to skip
IRRELEVANT_PATHS = (
    "/login", "/register", "/cart", "/checkout", "/wp-admin", "/wp-json",
    "/feed", "/tag/", "/author/", "/privacy", "/terms", "/cookie",
)

MAX_HEADINGS = 20
EXCERPT_CHARS = 2000


class CrawlService(ABC):
    """Contract for the crawl collaborator."""

    @abstractmethod
    def crawl(self, domain: str) -> AsyncIterator[CrawledPage]:
        """Yield the site's pages as they are fetched."""


class HttpCrawlService(CrawlService):
    """httpx + BeautifulSoup BFS crawler."""

    def __init__(
        self,
        max_pages: int | None = None,
        max_depth: int | None = None,
        request_delay: float | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.max_pages = max_pages or settings.crawler_max_pages
        self.max_depth = max_depth if max_depth is not None else settings.crawler_max_depth
        self.request_delay = request_delay if request_delay is not None else settings.crawler_request_delay
        self.timeout = timeout or settings.crawler_timeout
        self.user_agent = user_agent or settings.crawler_user_agent
        self.transport = transport
        self.log = logger.bind(component="HttpCrawlService")

    async def crawl(self, domain: str) -> AsyncIterator[CrawledPage]:
        site = extract_domain(domain)
        if not site:
            raise DomainUnreachableError(f"Invalid domain: {domain!r}")

        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            start_url = await self._resolve_start_url(client, site)
            robots = RobotsChecker(client)

            queue: deque[tuple[str, int]] = deque([(start_url, 0)])
            visited: set[str] = {normalize_url(start_url)}
            pages = 0

            self.log.info("Starting crawl", domain=site, max_pages=self.max_pages, max_depth=self.max_depth)

            while queue and pages < self.max_pages:
                url, depth = queue.popleft()

                if not await robots.can_fetch(url):
                    self.log.debug("Blocked by robots.txt", url=url[:80])
                    continue

                if pages > 0:
                    await asyncio.sleep(self.request_delay)

                response = await self._fetch(client, url, is_start=pages == 0)
                if response is None:
                    continue

                page, internal_links = self._parse(str(response.url), response.text, site)
                pages += 1
                yield page

                if depth >= self.max_depth:
                    continue
                for link in internal_links:
                    normalized = normalize_url(link)
                    if normalized not in visited:
                        visited.add(normalized)
                        queue.append((link, depth + 1))

            self.log.info("Crawl complete", domain=site, pages=pages)

    async def _resolve_start_url(self, client: httpx.AsyncClient, site: str) -> str:
        """Find a scheme/host combination that answers; unreachable if none does."""
        last_error: Exception | None = None
        for candidate in (f"https://{site}/", f"https://www.{site}/", f"http://{site}/"):
            try:
                await client.head(candidate)
                return candidate
            except httpx.TimeoutException as e:
                raise CollaboratorTimeoutError(f"Timed out connecting to {site}") from e
            except (httpx.ConnectError, httpx.UnsupportedProtocol) as e:
                last_error = e
                continue
        raise DomainUnreachableError(
            f"Domain {site} is unreachable",
            details={"error": str(last_error) if last_error else None},
        )

    async def _fetch(self, client: httpx.AsyncClient, url: str, is_start: bool) -> httpx.Response | None:
        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            if is_start:
                raise CollaboratorTimeoutError(f"Timed out fetching {url}") from e
            self.log.debug("Page timed out", url=url[:80])
            return None
        except httpx.RequestError as e:
            if is_start:
                raise CollaboratorError(f"Failed to fetch {url}: {e}") from e
            self.log.debug("Failed to fetch page", url=url[:80], error=str(e))
            return None

        if response.status_code == STATUS_TOO_MANY_REQUESTS:
            retry_after = response.headers.get("retry-after")
            raise RateLimitedError(
                f"Rate limited by {urlparse(url).hostname}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if is_start and response.status_code >= 500:
            raise CollaboratorError(f"Site returned {response.status_code} for {url}")
        if response.status_code != 200:
            return None
        if "html" not in response.headers.get("content-type", "text/html").lower():
            return None
        return response

    def _parse(self, url: str, html: str, site: str) -> tuple[CrawledPage, list[str]]:
        soup = BeautifulSoup(html, "lxml")
        title = soup.title.string.strip() if soup.title and soup.title.string else None

        headings = [
            re.sub(r"\s+", " ", h.get_text(" ", strip=True))
            for h in soup.find_all(["h1", "h2", "h3"])
        ]
        headings = [h for h in headings if h][:MAX_HEADINGS]

        internal: list[str] = []
        outbound: list[str] = []
        for tag in soup.find_all("a", href=True):
            href = tag["href"].strip()
            if not href or href.startswith(("javascript:", "mailto:", "tel:", "#")):
                continue
            full_url = urljoin(url, href)
            parsed = urlparse(full_url)
            if parsed.scheme not in ("http", "https") or not parsed.hostname:
                continue
            if is_same_site(full_url, site):
                path = parsed.path.lower()
                if path.endswith(SKIP_EXTENSIONS) or any(p in path for p in IRRELEVANT_PATHS):
                    continue
                internal.append(full_url)
            else:
                outbound.append(full_url)

        for tag in soup(["script", "style", "noscript", "nav", "footer", "header"]):
            tag.decompose()
        body = soup.find("main") or soup.body or soup
        text = re.sub(r"\s+", " ", body.get_text(" ", strip=True))

        page = CrawledPage(
            url=url,
            title=title,
            headings=headings,
            content_excerpt=text[:EXCERPT_CHARS],
            outbound_links=list(dict.fromkeys(outbound)),
        )
        return page, internal
