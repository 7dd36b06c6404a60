"""
Evidence normalization and evidence-upgrade cooldowns.

``normalize_evidence`` turns raw extraction output plus the upload audit
trail into one tagged record per tracked signal (label, weight, barcode,
classification). It never computes a tier; see ``quality_tier``.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from landedcost.core.config import settings
from landedcost.services.category_rules import get_prior
from landedcost.services.schemas import (
    BarcodeEvidence,
    CandidateSource,
    ClassificationCandidate,
    ClassificationEvidence,
    LabelEvidence,
    Provenance,
    ReportEvidence,
    Signals,
    WeightEvidence,
)

SUCCESS = "success"

_CANDIDATE_PROVENANCE = {
    CandidateSource.VISION: Provenance.VISION_INFERENCE,
    CandidateSource.MARKET_ESTIMATE: Provenance.MARKET_ESTIMATE,
    CandidateSource.CATEGORY_FALLBACK: Provenance.CATEGORY_DEFAULT,
    CandidateSource.FALLBACK: Provenance.CATEGORY_DEFAULT,
}


def _parse_ts(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _step(audit: dict, step: str) -> Tuple[bool, bool, Optional[str]]:
    """(uploaded, succeeded, failure_reason) for one extraction step."""
    uploaded = bool(audit.get(f"{step}_uploaded"))
    status = audit.get(f"{step}_status")
    reason = audit.get(f"{step}_failure_reason") if status not in (None, SUCCESS) else None
    return uploaded, status == SUCCESS, reason


def _label_evidence(facts: dict, audit: dict, manual: dict, attempted_at, manual_at) -> LabelEvidence:
    uploaded, ok, reason = _step(audit, "label")
    text = facts.get("label_text")
    extracted = ok and bool(text)
    record = LabelEvidence(
        uploaded=uploaded,
        extracted=extracted,
        confirmed=extracted,
        failure_reason=reason,
        inferred_value=text,
        provenance=Provenance.LABEL_CONFIRMED if extracted else None,
        units_per_case=facts.get("units_per_case") if extracted else None,
        last_attempt_at=attempted_at if uploaded else None,
        last_success_at=attempted_at if extracted else None,
    )

    manual_text = manual.get("label_text")
    manual_units = manual.get("units_per_case")
    if manual_text or manual_units or manual.get("origin_country"):
        # Manual entry outranks OCR; keep the failure reason for transparency
        record = record.model_copy(update={
            "extracted": True,
            "confirmed": True,
            "provenance": Provenance.MANUAL_ENTRY,
            "inferred_value": manual_text or text,
            "units_per_case": manual_units or record.units_per_case,
            "origin_country": manual.get("origin_country"),
            "last_success_at": manual_at or record.last_success_at,
        })
    return record


def _weight_evidence(facts: dict, audit: dict, manual: dict, category_key, attempted_at, manual_at) -> WeightEvidence:
    label_uploaded, label_ok, label_reason = _step(audit, "label")
    weight = facts.get("weight_kg")
    manual_grams = manual.get("net_weight_grams")

    if manual_grams:
        return WeightEvidence(
            uploaded=label_uploaded,
            extracted=True,
            confirmed=True,
            failure_reason=label_reason,
            inferred_value=round(float(manual_grams) / 1000.0, 4),
            provenance=Provenance.MANUAL_ENTRY,
            last_attempt_at=attempted_at if label_uploaded else None,
            last_success_at=manual_at,
        )

    if weight is not None and label_ok and facts.get("weight_source") == "label":
        return WeightEvidence(
            uploaded=label_uploaded,
            extracted=True,
            confirmed=True,
            inferred_value=weight,
            provenance=Provenance.LABEL_CONFIRMED,
            last_attempt_at=attempted_at,
            last_success_at=attempted_at,
        )

    if weight is not None:
        return WeightEvidence(
            uploaded=label_uploaded,
            extracted=True,
            confirmed=False,
            failure_reason=label_reason,
            inferred_value=weight,
            provenance=Provenance.VISION_INFERENCE,
            last_attempt_at=attempted_at,
            last_success_at=attempted_at,
        )

    return WeightEvidence(
        uploaded=label_uploaded,
        extracted=False,
        confirmed=False,
        failure_reason=label_reason,
        inferred_value=get_prior(category_key).weight_kg,
        provenance=Provenance.CATEGORY_DEFAULT,
        last_attempt_at=attempted_at if label_uploaded else None,
    )


def _barcode_evidence(facts: dict, audit: dict, attempted_at) -> BarcodeEvidence:
    uploaded, ok, reason = _step(audit, "barcode")
    code = facts.get("barcode")
    extracted = ok and bool(code)
    return BarcodeEvidence(
        uploaded=uploaded,
        extracted=extracted,
        confirmed=extracted,
        failure_reason=reason,
        inferred_value=code,
        provenance=Provenance.BARCODE_SCAN if extracted else None,
        last_attempt_at=attempted_at if uploaded else None,
        last_success_at=attempted_at if extracted else None,
    )


def _classification_evidence(candidates: List[ClassificationCandidate], audit: dict, attempted_at) -> ClassificationEvidence:
    _, _, reason = _step(audit, "classification")
    if not candidates:
        return ClassificationEvidence(uploaded=True, failure_reason=reason, last_attempt_at=attempted_at)

    top = candidates[0]
    resolved = top.source != CandidateSource.FALLBACK
    return ClassificationEvidence(
        uploaded=True,
        extracted=resolved,
        confirmed=False,
        failure_reason=reason if not resolved else None,
        inferred_value=top.code,
        confidence=top.confidence,
        provenance=_CANDIDATE_PROVENANCE[top.source],
        last_attempt_at=attempted_at,
        last_success_at=attempted_at if resolved else None,
    )


def normalize_evidence(
    raw_extraction: Optional[dict],
    audit_trail: Optional[dict],
    manual: Optional[dict] = None,
    candidates: Optional[List[ClassificationCandidate]] = None,
    category_key: Optional[str] = None,
) -> ReportEvidence:
    """
    Build per-signal evidence records.

    Args:
        raw_extraction: Fast facts payload (``FastFacts`` dump)
        audit_trail: Upload audit with ``<step>_uploaded``, ``<step>_status``
            and ``<step>_failure_reason`` keys
        manual: User-entered label fields; always wins over extraction
        candidates: Resolved classification candidates, best first
        category_key: Category used for default weight
    """
    facts = raw_extraction or {}
    audit = audit_trail or {}
    manual = manual or {}
    attempted_at = _parse_ts(audit.get("attempted_at"))
    manual_at = _parse_ts(manual.get("confirmed_at"))

    return ReportEvidence(
        label=_label_evidence(facts, audit, manual, attempted_at, manual_at),
        weight=_weight_evidence(facts, audit, manual, category_key, attempted_at, manual_at),
        barcode=_barcode_evidence(facts, audit, attempted_at),
        classification=_classification_evidence(candidates or [], audit, attempted_at),
    )


# ============= EVIDENCE UPGRADE COOLDOWN =============

def _remaining_seconds(anchor: Optional[datetime], hours: int, now: datetime) -> int:
    if anchor is None:
        return 0
    if anchor.tzinfo is None:
        anchor = anchor.replace(tzinfo=timezone.utc)
    remaining = (anchor + timedelta(hours=hours) - now).total_seconds()
    return max(0, math.ceil(remaining))


def get_evidence_cooldown(
    signals: Signals,
    last_attempt_at: Optional[datetime],
    last_success_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> Tuple[bool, int]:
    """
    Whether an evidence upgrade may run now.

    Both windows apply: the last attempt (12h, or 24h once evidence exists)
    and, when evidence exists, the last success (24h). The longer remaining
    delay wins.

    Returns:
        Tuple of (allowed, retry_after_seconds)
    """
    now = now or datetime.now(timezone.utc)

    attempt_hours = (settings.EVIDENCE_COOLDOWN_HOURS_EVIDENCE if signals.has_import_evidence
                     else settings.EVIDENCE_COOLDOWN_HOURS_BASELINE)
    retry_after = _remaining_seconds(last_attempt_at, attempt_hours, now)
    if signals.has_import_evidence:
        retry_after = max(
            retry_after,
            _remaining_seconds(last_success_at, settings.EVIDENCE_COOLDOWN_HOURS_EVIDENCE, now),
        )
    return retry_after == 0, retry_after
