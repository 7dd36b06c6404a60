"""
Read-side projection of a report.

Stored payloads are lifted to the current schema version, cost ranges are
normalized, and the quality tier is recomputed on every read. Nothing here
writes to the database.
"""
from typing import Any, Dict, Optional

from landedcost.core.logging import get_logger
from landedcost.db.models import Report
from landedcost.services.classification import resolve_classification
from landedcost.services.cost_range import normalize_baseline
from landedcost.services.evidence import normalize_evidence
from landedcost.services.quality_tier import compute_quality_tier
from landedcost.services.schemas import (
    CURRENT_SCHEMA_VERSION,
    Baseline,
    ClassificationCandidate,
    FastFacts,
    ReportEvidence,
    Signals,
    Verification,
)

logger = get_logger(__name__)


def _lift_v1_baseline(baseline: dict) -> dict:
    """v1 stored a flat landed-cost ``cost_range`` of {min, max}."""
    flat = baseline.get("cost_range") or {}
    lo = float(flat.get("min", 0.0))
    hi = float(flat.get("max", lo))
    mid = float(flat.get("mid", (lo + hi) / 2))
    unit = baseline.get("unit_price")
    if not isinstance(unit, dict):
        price = float(unit) if unit is not None else mid
        unit = {"min": price, "mid": price, "max": price}

    def breakdown(total: float) -> dict:
        return {"unit_price": unit["mid"], "shipping": 0.0, "duty": 0.0, "fee": 0.0, "total_landed": total}

    return {
        "cost_range": {"conservative": breakdown(hi), "standard": breakdown(mid)},
        "total_landed": {"min": lo, "mid": mid, "max": hi, "currency": flat.get("currency", "USD")},
        "unit_price": unit,
        "risk_scores": baseline.get("risk_scores")
        or {"tariff": 0.0, "compliance": 0.0, "supply": 0.0, "total": 0.0, "level": "unknown"},
        "risk_flags": baseline.get("risk_flags") or {},
        "assumptions": {**(baseline.get("assumptions") or {}), "migrated_from_version": 1.0},
    }


def _lift_v1_evidence(evidence: Any) -> Any:
    """v1 stored evidence as a dict keyed by kind without the ``kind`` tag."""
    if not isinstance(evidence, dict):
        return evidence
    return [{**record, "kind": kind} for kind, record in evidence.items() if isinstance(record, dict)]


def migrate_payload(payload: Dict[str, Any], version: Optional[int]) -> Dict[str, Any]:
    """
    Lift stored JSON payloads to ``CURRENT_SCHEMA_VERSION``.

    Args:
        payload: dict with any of ``baseline`` and ``evidence``
        version: schema_version the payload was written with

    Returns:
        New dict in the current shape; the input is not modified
    """
    version = version or 1
    migrated = dict(payload)
    if version < 2:
        if migrated.get("baseline") and "standard" not in (migrated["baseline"].get("cost_range") or {}):
            migrated["baseline"] = _lift_v1_baseline(migrated["baseline"])
        if migrated.get("evidence") is not None:
            migrated["evidence"] = _lift_v1_evidence(migrated["evidence"])
    if version > CURRENT_SCHEMA_VERSION:
        logger.warning(f"payload schema_version {version} is newer than {CURRENT_SCHEMA_VERSION}")
    return migrated


def build_report_view(report: Report) -> Dict[str, Any]:
    """Full report projection with normalized ranges and a freshly computed tier."""
    payload = migrate_payload(
        {"baseline": report.baseline, "evidence": report.evidence},
        report.schema_version,
    )
    label = f"report:{report.id}"
    facts = FastFacts(**(report.fast_facts or {}))

    baseline = None
    if payload["baseline"]:
        baseline = normalize_baseline(Baseline(**payload["baseline"]), label)

    if report.classification_candidates:
        candidates = [ClassificationCandidate(**c) for c in report.classification_candidates]
    else:
        candidates = resolve_classification(category=facts.category)

    if payload["evidence"]:
        evidence = ReportEvidence.load(payload["evidence"])
    else:
        evidence = normalize_evidence(
            facts.model_dump(mode="json"),
            report.upload_audit,
            manual=report.label_confirmed_fields,
            candidates=candidates,
            category_key=report.category_key,
        )

    signals = Signals(**(report.signals or {}))
    verification = Verification(**(report.verification or {}))
    tier = compute_quality_tier(evidence, signals, verification)

    return {
        "report_id": report.id,
        "status": report.status,
        "schema_version": CURRENT_SCHEMA_VERSION,
        "request_params": report.request_params,
        "fast_facts": facts.model_dump(mode="json"),
        "category_key": report.category_key,
        "baseline": baseline.model_dump(mode="json") if baseline else None,
        "classification_candidates": [c.model_dump(mode="json") for c in candidates],
        "evidence": evidence.dump(),
        "signals": signals.model_dump(mode="json"),
        "evidence_items": report.evidence_items or [],
        "verification": verification.model_dump(mode="json"),
        "quality_tier": tier.tier.value,
        "quality_tier_reason": tier.reason,
        "missing_inputs": tier.missing_inputs,
        "label_extraction_status": report.label_extraction_status,
        "label_confirmed_fields": report.label_confirmed_fields,
        "error": {"code": report.error_code, "step": report.error_step} if report.error_code else None,
        "created_at": report.created_at.isoformat() if report.created_at else None,
        "updated_at": report.updated_at.isoformat() if report.updated_at else None,
    }
