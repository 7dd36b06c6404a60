"""
Tests for evidence normalization, cooldowns and the quality tier engine.
"""
from datetime import datetime, timedelta, timezone
import itertools

import pytest

from landedcost.services.classification import resolve_classification
from landedcost.services.evidence import get_evidence_cooldown, normalize_evidence
from landedcost.services.quality_tier import compute_quality_tier
from landedcost.services.schemas import (
    LabelEvidence,
    Provenance,
    QualityTier,
    ReportEvidence,
    Signals,
    Verification,
    WeightEvidence,
)

ATTEMPTED_AT = "2024-10-01T12:00:00+00:00"

LABEL_OK_FACTS = {
    "product_name": "Plush Toy Bear",
    "category": "Toys",
    "label_text": "Net Wt 250g\n24 pcs per carton",
    "weight_kg": 0.25,
    "weight_source": "label",
    "units_per_case": 24,
}
LABEL_OK_AUDIT = {
    "attempted_at": ATTEMPTED_AT,
    "label_uploaded": True,
    "label_status": "success",
    "barcode_uploaded": False,
    "barcode_status": "not_provided",
    "classification_uploaded": True,
    "classification_status": "success",
}
OCR_FAILED_AUDIT = {
    **LABEL_OK_AUDIT,
    "label_status": "failed",
    "label_failure_reason": "low-contrast",
}


class TestNormalizeEvidence:
    """Evidence records carry upload, extraction and provenance."""

    def test_label_read_gives_confirmed_weight(self):
        evidence = normalize_evidence(LABEL_OK_FACTS, LABEL_OK_AUDIT, category_key="toys")
        assert evidence.label.extracted and evidence.label.confirmed
        assert evidence.label.case_pack_known
        assert evidence.weight.provenance == Provenance.LABEL_CONFIRMED
        assert evidence.weight.confirmed
        assert evidence.barcode.uploaded is False

    def test_failed_ocr_reason_copied_verbatim(self):
        evidence = normalize_evidence({"product_name": "Plush Toy Bear"}, OCR_FAILED_AUDIT, category_key="toys")
        assert evidence.label.uploaded is True
        assert evidence.label.extracted is False
        assert evidence.label.failure_reason == "low-contrast"

    def test_vision_weight_is_not_confirmed(self):
        facts = {"weight_kg": 0.4, "weight_source": "vision"}
        evidence = normalize_evidence(facts, OCR_FAILED_AUDIT, category_key="toys")
        assert evidence.weight.provenance == Provenance.VISION_INFERENCE
        assert evidence.weight.extracted and not evidence.weight.confirmed

    def test_missing_weight_uses_category_default(self):
        evidence = normalize_evidence({}, {}, category_key="toys")
        assert evidence.weight.provenance == Provenance.CATEGORY_DEFAULT
        assert evidence.weight.inferred_value > 0
        assert not evidence.weight.extracted

    def test_manual_weight_overrides_failed_ocr(self):
        manual = {"net_weight_grams": 300, "confirmed_at": ATTEMPTED_AT}
        evidence = normalize_evidence({}, OCR_FAILED_AUDIT, manual=manual, category_key="toys")
        assert evidence.weight.extracted is True
        assert evidence.weight.confirmed is True
        assert evidence.weight.provenance == Provenance.MANUAL_ENTRY
        assert evidence.weight.inferred_value == pytest.approx(0.3)
        # Reason is kept for transparency
        assert evidence.weight.failure_reason == "low-contrast"

    def test_manual_label_fields_override(self):
        manual = {"label_text": "Net 300g", "units_per_case": 12, "origin_country": "VN"}
        evidence = normalize_evidence({}, OCR_FAILED_AUDIT, manual=manual)
        assert evidence.label.provenance == Provenance.MANUAL_ENTRY
        assert evidence.label.units_per_case == 12
        assert evidence.label.origin_country == "VN"

    def test_classification_record_from_candidates(self):
        candidates = resolve_classification(category="toys")
        evidence = normalize_evidence({}, LABEL_OK_AUDIT, candidates=candidates)
        assert evidence.classification.inferred_value == "9503.00"
        assert evidence.classification.provenance == Provenance.CATEGORY_DEFAULT

    def test_dump_and_load_keep_variants(self):
        evidence = normalize_evidence(LABEL_OK_FACTS, LABEL_OK_AUDIT, category_key="toys")
        loaded = ReportEvidence.load(evidence.dump())
        assert isinstance(loaded.label, LabelEvidence)
        assert isinstance(loaded.weight, WeightEvidence)
        assert loaded == evidence


def _evidence(label_ok: bool, weight_ok: bool, case_pack: bool) -> ReportEvidence:
    return ReportEvidence(
        label=LabelEvidence(uploaded=True, extracted=label_ok, confirmed=label_ok,
                            units_per_case=24 if case_pack else None),
        weight=WeightEvidence(uploaded=True, extracted=weight_ok, confirmed=weight_ok),
    )


class TestQualityTier:
    """Tier rules and their ordering."""

    @pytest.mark.parametrize("flags", list(itertools.product([True, False], repeat=6)))
    def test_quoted_is_always_verified(self, flags):
        label_ok, weight_ok, case_pack, imports, similar, category = flags
        result = compute_quality_tier(
            _evidence(label_ok, weight_ok, case_pack),
            Signals(has_import_evidence=imports, has_internal_similar_records=similar,
                    has_category_baseline=category),
            Verification(quoted=True, quote_price=1.2),
        )
        assert result.tier == QualityTier.VERIFIED

    def test_verified_still_reports_missing_inputs(self):
        result = compute_quality_tier(_evidence(False, False, False), Signals(), Verification(quoted=True))
        assert result.tier == QualityTier.VERIFIED
        assert set(result.missing_inputs) == {"label", "weight", "case_pack"}

    def test_trade_backed_needs_all_inputs(self):
        signals = Signals(has_import_evidence=True)
        assert compute_quality_tier(_evidence(True, True, True), signals).tier == QualityTier.TRADE_BACKED
        assert compute_quality_tier(_evidence(True, False, True), signals).tier == QualityTier.BENCHMARK

    def test_benchmark_from_category_signals(self):
        result = compute_quality_tier(_evidence(False, False, False), Signals(has_category_baseline=True))
        assert result.tier == QualityTier.BENCHMARK

    def test_preliminary_without_signals(self):
        result = compute_quality_tier(_evidence(True, True, True), Signals())
        assert result.tier == QualityTier.PRELIMINARY

    def test_manual_weight_after_failed_ocr_is_not_penalized(self):
        manual = {"net_weight_grams": 300, "label_text": "Net 300g", "units_per_case": 24}
        evidence = normalize_evidence({}, OCR_FAILED_AUDIT, manual=manual, category_key="toys")
        result = compute_quality_tier(evidence, Signals(has_import_evidence=True))
        assert "weight" not in result.missing_inputs
        assert result.tier == QualityTier.TRADE_BACKED

    def test_tier_ordering(self):
        assert QualityTier.PRELIMINARY < QualityTier.BENCHMARK < QualityTier.TRADE_BACKED < QualityTier.VERIFIED
        assert max(QualityTier) == QualityTier.VERIFIED

    def test_tier_never_drops_as_evidence_accumulates(self):
        steps = [
            (_evidence(False, False, False), Signals()),
            (_evidence(True, False, False), Signals(has_category_baseline=True)),
            (_evidence(True, True, True), Signals(has_category_baseline=True, has_import_evidence=True)),
        ]
        tiers = [compute_quality_tier(e, s).tier for e, s in steps]
        assert tiers == sorted(tiers)


class TestEvidenceCooldown:
    """Evidence upgrade rate limits."""

    NOW = datetime(2024, 10, 2, 12, 0, tzinfo=timezone.utc)

    def test_first_attempt_allowed(self):
        assert get_evidence_cooldown(Signals(), None, None, now=self.NOW) == (True, 0)

    def test_baseline_window_is_12_hours(self):
        allowed, retry = get_evidence_cooldown(Signals(), self.NOW - timedelta(hours=11), None, now=self.NOW)
        assert not allowed
        assert retry == 3600
        assert get_evidence_cooldown(Signals(), self.NOW - timedelta(hours=12), None, now=self.NOW)[0]

    def test_window_is_24_hours_once_evidence_exists(self):
        signals = Signals(has_import_evidence=True)
        last = self.NOW - timedelta(hours=13)
        allowed, retry = get_evidence_cooldown(signals, last, last, now=self.NOW)
        assert not allowed
        assert retry == 11 * 3600

    def test_recent_attempt_blocks_after_old_success(self):
        signals = Signals(has_import_evidence=True)
        allowed, retry = get_evidence_cooldown(
            signals, self.NOW - timedelta(minutes=1), self.NOW - timedelta(hours=30), now=self.NOW,
        )
        assert not allowed
        assert retry == 24 * 3600 - 60

    def test_longer_window_wins(self):
        signals = Signals(has_import_evidence=True)
        allowed, retry = get_evidence_cooldown(
            signals, self.NOW - timedelta(hours=20), self.NOW - timedelta(hours=2), now=self.NOW,
        )
        assert not allowed
        assert retry == 22 * 3600

    def test_naive_timestamps_treated_as_utc(self):
        naive = (self.NOW - timedelta(minutes=30)).replace(tzinfo=None)
        allowed, retry = get_evidence_cooldown(Signals(), naive, None, now=self.NOW)
        assert not allowed
        assert retry == 11 * 3600 + 30 * 60
