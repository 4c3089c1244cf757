"""
Authority signal extraction.

Regex pass over About/Team-like pages for credentials, awards and tenure.
The finalize step merges these with the analysis collaborator's reading of
the same pages.
"""

import re

from citescan.jobs.outputs import AuthoritySignals, CrawledPage
from citescan.services.url_utils import path_of

ABOUT_PATH_HINTS = (
    "about", "team", "who-we-are", "our-story", "leadership", "founder",
    "staff", "people", "company", "history",
)
ABOUT_TITLE_HINTS = ("about", "our team", "who we are", "leadership", "our story")

MAX_SIGNALS = 10
MAX_SIGNAL_CHARS = 200

CREDENTIAL_PATTERNS = [
    re.compile(
        r"\b(?:board[- ])?(?:certified|licensed|accredited|chartered|registered)\b[^.!?\n]{3,120}",
        re.IGNORECASE,
    ),
    re.compile(r"\b(?:Ph\.?D\.?|MBA|CPA|CFA|PMP|CISSP|M\.D\.|J\.D\.)(?=[\s,.;]|$)[^.!?\n]{0,100}"),
    re.compile(r"\bmember of (?:the )?[A-Z][^.!?\n]{3,100}"),
]

AWARD_PATTERNS = [
    re.compile(
        r"\b(?:award[- ]winning|winner of|won the|awarded|recipient of)\b[^.!?\n]{3,120}",
        re.IGNORECASE,
    ),
    re.compile(
        r"\bnamed (?:one of )?(?:the )?(?:best|top)\b[^.!?\n]{3,120}",
        re.IGNORECASE,
    ),
]

TENURE_PATTERNS = [
    re.compile(
        r"\b(?:since|established in|founded in|serving [^.!?\n]{0,40} since)\s+(?:19|20)\d{2}\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(?:over |more than )?\d{1,3}\+?\s+years\s+(?:of\s+)?(?:experience|in business|serving)\b",
        re.IGNORECASE,
    ),
]


def is_about_page(page: CrawledPage) -> bool:
    path = path_of(page.url).lower()
    if any(hint in path for hint in ABOUT_PATH_HINTS):
        return True
    title = (page.title or "").lower()
    return any(hint in title for hint in ABOUT_TITLE_HINTS)


def _clean(match: str) -> str:
    return re.sub(r"\s+", " ", match).strip(" ,;:-")[:MAX_SIGNAL_CHARS]


def _find_all(patterns: list[re.Pattern], text: str) -> list[str]:
    found: list[str] = []
    for pattern in patterns:
        found.extend(_clean(m.group(0)) for m in pattern.finditer(text))
    return found


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for value in values:
        key = value.lower()
        if value and key not in seen:
            seen.add(key)
            unique.append(value)
    return unique[:MAX_SIGNALS]


def extract_signals(pages: list[CrawledPage]) -> AuthoritySignals:
    credentials: list[str] = []
    awards: list[str] = []
    tenure: list[str] = []
    sources: list[str] = []

    for page in pages:
        text = " ".join([*page.headings, page.content_excerpt])
        page_credentials = _find_all(CREDENTIAL_PATTERNS, text)
        page_awards = _find_all(AWARD_PATTERNS, text)
        page_tenure = _find_all(TENURE_PATTERNS, text)
        if page_credentials or page_awards or page_tenure:
            sources.append(page.url)
        credentials.extend(page_credentials)
        awards.extend(page_awards)
        tenure.extend(page_tenure)

    return AuthoritySignals(
        credentials=_dedupe(credentials),
        awards=_dedupe(awards),
        tenure=_dedupe(tenure),
        source_urls=_dedupe(sources),
    )


def merge_signals(first: AuthoritySignals, second: AuthoritySignals) -> AuthoritySignals:
    return AuthoritySignals(
        credentials=_dedupe(first.credentials + second.credentials),
        awards=_dedupe(first.awards + second.awards),
        tenure=_dedupe(first.tenure + second.tenure),
        source_urls=_dedupe(first.source_urls + second.source_urls),
    )
