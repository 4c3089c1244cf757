"""
Unit tests for hub selection and off-site scoring heuristics.
"""

from datetime import UTC, datetime

import pytest

from citescan.core.models import CandidateSource
from citescan.jobs.outputs import CrawledPage, OffsiteItem, OffsiteScores
from citescan.services.scoring import (
    UNKNOWN_ENGAGEMENT,
    UNKNOWN_RECENCY,
    cosine_similarity,
    keyword_match,
    page_relevance,
    page_text,
    rank_offsite,
    score_candidate,
    score_engagement,
    score_recency,
    score_salience,
    select_hub,
    tokenize,
)
from tests.conftest import site_pages

NOW = datetime(2026, 3, 2, tzinfo=UTC)


def _item(url: str, total_parts: tuple[int, int, int, int, int]) -> OffsiteItem:
    relevance, salience, engagement, recency, authority = total_parts
    return OffsiteItem(
        cluster_topic="Drain Cleaning",
        url=url,
        source=CandidateSource.SEARCH,
        scores=OffsiteScores(
            relevance=relevance,
            salience=salience,
            engagement=engagement,
            recency=recency,
            authority=authority,
        ),
    )


class TestText:
    def test_tokenize_drops_stopwords_and_short_words(self):
        assert tokenize("The best drain cleaning for you") == ["best", "drain", "cleaning"]

    def test_cosine_similarity_bounds(self):
        assert cosine_similarity(["a1b"], []) == 0.0
        assert cosine_similarity(["drain", "sewer"], ["drain", "sewer"]) == pytest.approx(1.0)
        assert cosine_similarity(["drain"], ["heater"]) == 0.0


# =========================================================================
# Hub selection
# =========================================================================


class TestHubSelection:
    def test_keyword_match_weights_prominent_placement(self):
        page = CrawledPage(
            url="https://x.com/services/drain-cleaning",
            title="Drain Cleaning",
            content_excerpt="We also handle sewer lines.",
        )
        # "drain cleaning" prominent (1.0), "sewer" body only (0.5), "hydro" missing
        assert keyword_match(["drain cleaning", "sewer", "hydro"], page) == pytest.approx(0.5)

    def test_selects_most_relevant_page(self):
        hub, relevance, matched = select_hub(
            "Drain Cleaning", ["drain cleaning", "clogged drain", "sewer"], site_pages()
        )
        assert hub.url == "https://acmeplumbing.com/services/drain-cleaning"
        assert 0 < relevance <= 1
        assert matched[0] == hub.url
        assert "https://acmeplumbing.com/services/water-heaters" not in matched

    def test_relevance_combines_keyword_and_similarity(self):
        page = site_pages()[2]
        topic, keywords = "Water Heater Repair", ["water heater", "tankless"]

        kw = keyword_match(keywords, page)
        sim = cosine_similarity(tokenize(" ".join([topic, *keywords])), tokenize(page_text(page)))
        assert kw == pytest.approx(1.0)
        assert page_relevance(topic, keywords, page) == pytest.approx(0.6 * kw + 0.4 * sim, abs=1e-4)

    def test_tie_goes_to_shortest_path(self):
        text = "Emergency plumbing available around the clock."
        pages = [
            CrawledPage(url="https://x.com/services/emergency/plumbing", title="Emergency", content_excerpt=text),
            CrawledPage(url="https://x.com/emergency", title="Emergency", content_excerpt=text),
            CrawledPage(url="https://x.com/services/emergency", title="Emergency", content_excerpt=text),
        ]
        hub, _, _ = select_hub("Emergency plumbing", ["emergency"], pages)
        assert hub.url == "https://x.com/emergency"

    def test_tie_with_equal_depth_prefers_shorter_path(self):
        text = "Emergency plumbing available around the clock."
        pages = [
            CrawledPage(url="https://x.com/emergency-services", title="Emergency", content_excerpt=text),
            CrawledPage(url="https://x.com/emergency", title="Emergency", content_excerpt=text),
        ]
        hub, _, _ = select_hub("Emergency plumbing", ["emergency"], pages)
        assert hub.url == "https://x.com/emergency"

    def test_requires_pages(self):
        with pytest.raises(ValueError):
            select_hub("Anything", ["anything"], [])


# =========================================================================
# Off-site scoring
# =========================================================================


class TestOffsiteScores:
    def test_candidate_scores_stay_in_range(self):
        platform, scores = score_candidate(
            url="https://www.youtube.com/watch?v=drain-cleaning",
            title="Acme Plumbing drain cleaning walkthrough",
            snippet="Acme Plumbing shows drain cleaning step by step.",
            metadata={"views": "1.2M", "date": "2026-02-20"},
            topic="Drain Cleaning",
            keywords=["drain cleaning", "clogged drain"],
            business_name="Acme Plumbing",
            now=NOW,
        )
        assert platform == "YouTube"
        assert 0 <= scores.relevance <= 25
        assert scores.salience == 25
        assert 0 < scores.engagement <= 15
        assert scores.recency == 10
        assert scores.authority == 22

    def test_unknown_site_gets_default_authority(self):
        platform, scores = score_candidate(
            url="https://some-blog.net/post",
            title="",
            snippet="",
            metadata={},
            topic="Drain Cleaning",
            keywords=["drain cleaning"],
            business_name="Acme Plumbing",
            now=NOW,
        )
        assert platform is None
        assert scores.authority == 8
        assert scores.engagement == UNKNOWN_ENGAGEMENT
        assert scores.recency == UNKNOWN_RECENCY

    def test_salience_prefers_name_in_title(self):
        in_title = score_salience("Acme Plumbing reviews", "", "https://yelp.com/x", "Acme Plumbing", "reviews")
        in_url = score_salience("Reviews", "", "https://yelp.com/acme-plumbing", "Acme Plumbing", "reviews")
        absent = score_salience("Reviews", "", "https://yelp.com/x", "Acme Plumbing", "heaters")
        assert in_title > in_url > absent

    @pytest.mark.parametrize(
        "metadata,expected",
        [
            ({}, UNKNOWN_ENGAGEMENT),
            ({"views": 0}, 0),
            ({"views": 999}, 9),
            ({"likes": "10k", "comments": 500}, 12),
            ({"views": 10**9}, 15),
            ({"views": "n/a"}, UNKNOWN_ENGAGEMENT),
        ],
    )
    def test_engagement_log_scale(self, metadata, expected):
        assert score_engagement(metadata) == expected

    @pytest.mark.parametrize(
        "date,expected",
        [
            ("2026-02-20", 10),
            ("2025-12-15T10:00:00Z", 8),
            ("2025-10-01", 6),
            ("2025-06-01", 4),
            ("2024-06-01", 2),
            ("2019-01-01", 1),
            ("not a date", UNKNOWN_RECENCY),
        ],
    )
    def test_recency_steps(self, date, expected):
        assert score_recency({"date": date}, NOW) == expected


class TestRankOffsite:
    def test_keeps_top_five_by_total(self):
        items = [_item(f"https://x.com/{i}", (10, 10, 5, 5, i)) for i in range(8)]
        kept = rank_offsite(items, min_keep=3, max_keep=5, min_total=0)
        assert [i.url for i in kept] == [f"https://x.com/{i}" for i in (7, 6, 5, 4, 3)]

    def test_ties_break_on_relevance_then_url(self):
        items = [
            _item("https://b.com", (10, 10, 0, 0, 10)),
            _item("https://a.com", (10, 10, 0, 0, 10)),
            _item("https://c.com", (20, 0, 0, 0, 10)),
        ]
        kept = rank_offsite(items, min_keep=3, max_keep=5, min_total=0)
        assert [i.url for i in kept] == ["https://c.com", "https://a.com", "https://b.com"]

    def test_drops_low_totals(self):
        items = [_item(f"https://x.com/{i}", (20, 20, 0, 0, 10)) for i in range(4)]
        items.append(_item("https://x.com/low", (1, 1, 0, 0, 1)))
        kept = rank_offsite(items, min_keep=3, max_keep=5, min_total=40)
        assert "https://x.com/low" not in [i.url for i in kept]
        assert len(kept) == 4

    def test_keeps_minimum_even_below_threshold(self):
        items = [
            _item("https://x.com/good", (20, 20, 5, 5, 10)),
            _item("https://x.com/meh", (5, 5, 0, 0, 5)),
            _item("https://x.com/poor", (1, 1, 0, 0, 1)),
            _item("https://x.com/worst", (0, 0, 0, 0, 1)),
        ]
        kept = rank_offsite(items, min_keep=3, max_keep=5, min_total=40)
        assert [i.url for i in kept] == ["https://x.com/good", "https://x.com/meh", "https://x.com/poor"]

    def test_fewer_candidates_than_minimum(self):
        items = [_item("https://x.com/only", (1, 1, 0, 0, 1))]
        assert len(rank_offsite(items, min_keep=3, max_keep=5, min_total=40)) == 1
