"""
Search Engine Service (discovery collaborator).

Provides:
- SearchService interface (swappable backends)
- DdgsSearchService (DuckDuckGo via ddgs library)
"""

import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import structlog
from ddgs import DDGS
from ddgs.exceptions import DDGSException, RatelimitException, TimeoutException

from citescan.core.config import settings
from citescan.core.exceptions import CollaboratorError, CollaboratorTimeoutError, RateLimitedError

logger = structlog.get_logger()

NO_RESULTS = "no results found"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class SearchResult:
    """Single search result."""
    url: str
    title: str
    snippet: str
    metadata: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Search Services
# =============================================================================


class SearchService(ABC):
    """Abstract base for search providers."""

    @abstractmethod
    async def search(self, query: str, max_results: int = 10) -> list[SearchResult]:
        """Execute search query and return results."""
        pass


class DdgsSearchService(SearchService):
    """DuckDuckGo search via ddgs library.

    Backs off briefly on rate limits inside one call; anything beyond that
    is surfaced as RateLimitedError for the job's retry policy.
    """

    def __init__(
        self,
        timeout: int | None = None,
        backend: str | None = None,
        region: str | None = None,
        max_retries: int = 2,
        max_backoff: float = 10.0,
    ):
        self.timeout = timeout or settings.search_timeout
        self.backend = backend or settings.search_backend
        self.region = region or settings.search_region
        self.max_retries = max_retries
        self.max_backoff = max_backoff
        self.log = logger.bind(provider="ddgs", backend=self.backend)

    async def search(self, query: str, max_results: int = 10) -> list[SearchResult]:
        """Execute DDG search with rate limit backoff."""
        for attempt in range(self.max_retries + 1):
            try:
                self.log.info("Executing search", query=query[:80], attempt=attempt + 1)
                results = await asyncio.to_thread(
                    lambda: list(DDGS(timeout=self.timeout).text(
                        query,
                        max_results=max_results,
                        region=self.region,
                        backend=self.backend,
                    ))
                )
            except RatelimitException as e:
                if attempt == self.max_retries:
                    raise RateLimitedError(f"Search rate limited: {e}") from e
                wait = min((2 ** attempt) + random.uniform(0, 1), self.max_backoff)
                self.log.warning("Rate limited, backing off",
                                 attempt=attempt + 1, wait_seconds=round(wait, 2))
                await asyncio.sleep(wait)
                continue
            except (TimeoutException, TimeoutError) as e:
                raise CollaboratorTimeoutError(f"Search timed out: {query[:80]}") from e
            except DDGSException as e:
                # ddgs reports an empty result page as an exception
                if NO_RESULTS in str(e).lower():
                    self.log.info("Search completed", result_count=0)
                    return []
                self.log.error("Search failed", error=str(e))
                raise CollaboratorError(f"Search failed: {e}") from e
            except Exception as e:
                self.log.error("Search failed", error=str(e))
                raise CollaboratorError(f"Search failed: {e}") from e

            self.log.info("Search completed", result_count=len(results))
            return [
                SearchResult(
                    url=r.get("href", ""),
                    title=r.get("title", ""),
                    snippet=r.get("body", ""),
                    metadata={k: v for k, v in r.items() if k not in ("href", "title", "body")},
                )
                for r in results
                if r.get("href")
            ]

        raise RateLimitedError(f"Search failed after {self.max_retries + 1} attempts")
