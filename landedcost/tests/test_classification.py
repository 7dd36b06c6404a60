"""
Tests for HS classification candidate resolution.
"""
import pytest

from landedcost.services.classification import SENTINEL_CODE, resolve_classification
from landedcost.services.schemas import CandidateSource


class TestResolveClassification:
    """Fallback chain: vision -> market -> category -> sentinel."""

    @pytest.mark.parametrize("vision_code,market,category", [
        (None, [], None),
        ("", [], ""),
        ("   ", None, "unknown stuff"),
        ("12", [{}], None),
        (None, [{"code": ""}, {"code": None}], "misc"),
    ])
    def test_never_empty(self, vision_code, market, category):
        candidates = resolve_classification(vision_code, market, category)
        assert len(candidates) >= 1

    def test_all_empty_returns_sentinel(self):
        candidates = resolve_classification()
        assert len(candidates) == 1
        assert candidates[0].code == SENTINEL_CODE
        assert candidates[0].source == CandidateSource.FALLBACK
        assert candidates[0].confidence == pytest.approx(0.2)

    def test_category_fallback_for_toys(self):
        candidates = resolve_classification(vision_code=None, market_candidates=[], category="toys")
        assert len(candidates) == 1
        assert candidates[0].source == CandidateSource.CATEGORY_FALLBACK
        assert candidates[0].confidence == pytest.approx(0.35)
        assert candidates[0].code == "9503.00"

    def test_category_table_order_wins(self):
        # "candy" precedes "food" in the table
        assert resolve_classification(category="Candy & Food")[0].code == "1704.90"

    def test_vision_code_first(self):
        candidates = resolve_classification(
            vision_code=" 9503.00.00 ",
            market_candidates=[{"code": "9503.00.0073", "confidence": 0.7}],
            category="toys",
        )
        assert candidates[0].code == "9503.00.00"
        assert candidates[0].source == CandidateSource.VISION
        assert candidates[0].confidence == pytest.approx(0.95)
        assert [c.source for c in candidates] == [CandidateSource.VISION, CandidateSource.MARKET_ESTIMATE]

    def test_short_vision_code_ignored(self):
        candidates = resolve_classification(vision_code="950", category="toys")
        assert candidates[0].source == CandidateSource.CATEGORY_FALLBACK

    def test_market_candidates_deduplicated(self):
        candidates = resolve_classification(
            vision_code="1704.90",
            market_candidates=[
                {"code": "1704.90"},
                {"code": "1806.90"},
                {"code": "1806.90", "confidence": 0.9},
            ],
        )
        assert [c.code for c in candidates] == ["1704.90", "1806.90"]

    def test_market_default_confidence_and_reason(self):
        candidates = resolve_classification(market_candidates=[{"code": "6109.10"}])
        assert candidates[0].confidence == pytest.approx(0.75)
        assert candidates[0].reason == "From market estimate"

    def test_category_not_used_when_market_present(self):
        candidates = resolve_classification(market_candidates=[{"code": "6109.10"}], category="toys")
        assert all(c.source != CandidateSource.CATEGORY_FALLBACK for c in candidates)
