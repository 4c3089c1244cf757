"""
Scoring heuristics for hub selection and off-site discovery.

Pure functions only; the step executors decide what to do with the numbers.

Hub relevance = 0.6 * keyword match + 0.4 * content similarity, both in
[0, 1]. Ties prefer the shortest, most homepage-adjacent URL path.

Off-site candidates get five independent scores:
relevance 0-25, salience 0-25, engagement 0-15, recency 0-10,
platform authority 0-25.
"""

import math
import re
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Any

from citescan.core.timeutils import ensure_utc
from citescan.jobs.outputs import CrawledPage, OffsiteItem, OffsiteScores
from citescan.services.url_utils import DEFAULT_PLATFORM_AUTHORITY, detect_platform, path_depth, path_of

KEYWORD_WEIGHT = 0.6
SIMILARITY_WEIGHT = 0.4
MATCH_THRESHOLD = 0.15

UNKNOWN_ENGAGEMENT = 5
UNKNOWN_RECENCY = 3

ENGAGEMENT_KEYS = ("views", "view_count", "likes", "like_count", "comments", "comment_count",
                   "upvotes", "score", "followers", "shares")
DATE_KEYS = ("date", "published", "published_at", "publishedAt", "updated", "upload_date")

STOPWORDS = {
    "the", "and", "for", "with", "that", "this", "from", "your", "you", "our", "are",
    "was", "were", "have", "has", "not", "but", "all", "can", "will", "more", "about",
    "into", "their", "they", "them", "what", "when", "how", "who", "why", "which",
    "its", "also", "any", "out", "use", "get", "one", "new",
}

_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9'-]{2,}")


def tokenize(text: str) -> list[str]:
    return [t for t in _TOKEN_RE.findall(text.lower()) if t not in STOPWORDS]


def cosine_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    ca, cb = Counter(a), Counter(b)
    if not ca or not cb:
        return 0.0
    dot = sum(ca[t] * cb[t] for t in ca.keys() & cb.keys())
    norm = math.sqrt(sum(v * v for v in ca.values())) * math.sqrt(sum(v * v for v in cb.values()))
    return dot / norm if norm else 0.0


# =============================================================================
# Hub selection
# =============================================================================


def keyword_match(keywords: Sequence[str], page: CrawledPage) -> float:
    """Fraction of keywords present; prominent placement counts fully, body text half."""
    if not keywords:
        return 0.0
    prominent = " ".join([path_of(page.url).replace("-", " "), page.title or "", *page.headings]).lower()
    body = page.content_excerpt.lower()

    total = 0.0
    for keyword in keywords:
        kw = keyword.lower().strip()
        if not kw:
            continue
        if kw in prominent:
            total += 1.0
        elif kw in body:
            total += 0.5
    return total / len(keywords)


def page_text(page: CrawledPage) -> str:
    return " ".join([page.title or "", *page.headings, page.content_excerpt])


def page_relevance(topic: str, keywords: Sequence[str], page: CrawledPage) -> float:
    topic_tokens = tokenize(" ".join([topic, *keywords]))
    similarity = cosine_similarity(topic_tokens, tokenize(page_text(page)))
    return round(KEYWORD_WEIGHT * keyword_match(keywords, page) + SIMILARITY_WEIGHT * similarity, 4)


def hub_sort_key(page: CrawledPage, relevance: float) -> tuple:
    path = path_of(page.url)
    return (-relevance, path_depth(page.url), len(path), page.url)


def select_hub(
    topic: str, keywords: Sequence[str], pages: Sequence[CrawledPage]
) -> tuple[CrawledPage, float, list[str]]:
    """Pick the hub page for a topic.

    Returns (hub page, hub relevance, urls of all pages matching the topic).
    """
    if not pages:
        raise ValueError("Cannot select a hub from zero pages")

    scored = [(page, page_relevance(topic, keywords, page)) for page in pages]
    scored.sort(key=lambda item: hub_sort_key(*item))

    hub, relevance = scored[0]
    matched = [page.url for page, score in scored if score >= MATCH_THRESHOLD]
    if hub.url not in matched:
        matched.insert(0, hub.url)
    return hub, relevance, matched


# =============================================================================
# Off-site candidate scoring
# =============================================================================


def _scale(value: float, maximum: int) -> int:
    return max(0, min(maximum, int(round(value * maximum))))


def score_relevance(text: str, url: str, topic: str, keywords: Sequence[str]) -> int:
    haystack = f"{text} {url.replace('-', ' ').replace('/', ' ')}".lower()
    kw_fraction = (
        sum(1 for kw in keywords if kw.lower() in haystack) / len(keywords) if keywords else 0.0
    )
    similarity = cosine_similarity(tokenize(" ".join([topic, *keywords])), tokenize(haystack))
    return _scale(KEYWORD_WEIGHT * kw_fraction + SIMILARITY_WEIGHT * similarity, 25)


def score_salience(title: str, snippet: str, url: str, business_name: str, topic: str) -> int:
    """How prominently the business and the topic feature in the candidate."""
    title_l, rest_l = title.lower(), f"{snippet} {url}".lower()
    name = business_name.lower().strip()
    compact = name.replace(" ", "")

    score = 0
    if name and name in title_l:
        score += 12
    elif name and (name in rest_l or compact in rest_l.replace("-", "")):
        score += 8

    topic_tokens = set(tokenize(topic))
    if topic_tokens:
        if topic_tokens & set(tokenize(title)):
            score += 8
        if topic_tokens & set(tokenize(snippet)):
            score += 5
    return min(25, score)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip().lower()
        multiplier = 1.0
        if cleaned.endswith("k"):
            multiplier, cleaned = 1_000.0, cleaned[:-1]
        elif cleaned.endswith("m"):
            multiplier, cleaned = 1_000_000.0, cleaned[:-1]
        try:
            return float(cleaned) * multiplier
        except ValueError:
            return None
    return None


def score_engagement(metadata: dict[str, Any]) -> int:
    numbers = [n for key in ENGAGEMENT_KEYS if (n := _as_number(metadata.get(key))) is not None]
    if not numbers:
        return UNKNOWN_ENGAGEMENT
    return min(15, int(3 * math.log10(sum(numbers) + 1)))


def _parse_date(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip().replace("Z", "+00:00")
    for candidate in (text, text[:10]):
        try:
            return ensure_utc(datetime.fromisoformat(candidate))
        except ValueError:
            continue
    return None


RECENCY_STEPS = (
    (timedelta(days=30), 10),
    (timedelta(days=90), 8),
    (timedelta(days=180), 6),
    (timedelta(days=365), 4),
    (timedelta(days=730), 2),
)


def score_recency(metadata: dict[str, Any], now: datetime) -> int:
    published = next((d for key in DATE_KEYS if (d := _parse_date(metadata.get(key)))), None)
    if published is None:
        return UNKNOWN_RECENCY
    age = now - published
    for limit, score in RECENCY_STEPS:
        if age <= limit:
            return score
    return 1


def score_platform_authority(url: str) -> tuple[str | None, int]:
    platform = detect_platform(url)
    if platform is None:
        return None, DEFAULT_PLATFORM_AUTHORITY
    return platform


def score_candidate(
    *,
    url: str,
    title: str,
    snippet: str,
    metadata: dict[str, Any],
    topic: str,
    keywords: Sequence[str],
    business_name: str,
    now: datetime,
) -> tuple[str | None, OffsiteScores]:
    platform, authority = score_platform_authority(url)
    scores = OffsiteScores(
        relevance=score_relevance(f"{title} {snippet}", url, topic, keywords),
        salience=score_salience(title, snippet, url, business_name, topic),
        engagement=score_engagement(metadata),
        recency=score_recency(metadata, now),
        authority=authority,
    )
    return platform, scores


def rank_offsite(
    items: Sequence[OffsiteItem], min_keep: int, max_keep: int, min_total: int
) -> list[OffsiteItem]:
    """Top candidates for one cluster.

    Sorted by total, then relevance, then URL. Items under min_total are
    dropped unless that would leave fewer than min_keep.
    """
    ranked = sorted(items, key=lambda i: (-i.total, -i.scores.relevance, i.url))
    kept = [i for i in ranked if i.total >= min_total][:max_keep]
    if len(kept) < min_keep:
        kept = ranked[:min_keep]
    return kept
