"""
Quality / confidence tier engine.

Pure function of evidence, signals and verification; safe to call on every read.
"""
from typing import List, Optional

from landedcost.services.schemas import (
    QualityTier,
    ReportEvidence,
    Signals,
    TierResult,
    Verification,
)


def missing_required_inputs(evidence: ReportEvidence) -> List[str]:
    """Required inputs count as present when extracted or manually confirmed."""
    missing = []
    if not evidence.label.confirmed:
        missing.append("label")
    if not evidence.weight.confirmed:
        missing.append("weight")
    if not evidence.label.case_pack_known:
        missing.append("case_pack")
    return missing


def compute_quality_tier(
    evidence: ReportEvidence,
    signals: Optional[Signals] = None,
    verification: Optional[Verification] = None,
) -> TierResult:
    signals = signals or Signals()
    verification = verification or Verification()
    missing = missing_required_inputs(evidence)

    if verification.quoted:
        return TierResult(
            tier=QualityTier.VERIFIED,
            reason="Supplier quote confirmed in writing",
            missing_inputs=missing,
        )

    if signals.has_import_evidence and not missing:
        return TierResult(
            tier=QualityTier.TRADE_BACKED,
            reason="Import records found and all required inputs present",
            missing_inputs=missing,
        )

    if signals.has_category_signals:
        if signals.has_import_evidence:
            reason = f"Import records found; missing {', '.join(missing)}"
        elif signals.has_internal_similar_records:
            reason = "Benchmarked against similar internal records"
        else:
            reason = "Benchmarked against category averages"
        return TierResult(tier=QualityTier.BENCHMARK, reason=reason, missing_inputs=missing)

    return TierResult(
        tier=QualityTier.PRELIMINARY,
        reason="No category or import signals yet",
        missing_inputs=missing,
    )
