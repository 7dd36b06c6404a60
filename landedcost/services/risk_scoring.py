"""
Risk scoring service for landed-cost estimates.
"""
from typing import List, Optional, Tuple

from landedcost.services.category_rules import GENERAL_MERCH, get_prior
from landedcost.services.classification import SENTINEL_CODE
from landedcost.services.schemas import MoneyRange, RiskFlags, RiskScores

# Origins with active trade remedies or elevated scrutiny
SENSITIVE_ORIGINS = {"CN", "CHINA", "VN", "VIETNAM", "RU", "RUSSIA"}

# HS chapters with frequent antidumping / countervailing duty orders
ADCVD_CHAPTERS = {"72", "73", "76", "85", "94"}


def _level(score: float) -> str:
    if score >= 70:
        return "critical"
    elif score >= 50:
        return "high"
    elif score >= 25:
        return "medium"
    return "low"


def calculate_risk(
    category_key: Optional[str],
    duty_rate: float,
    hs_codes: List[str],
    analysis: dict,
    moq_range: MoneyRange,
    lead_time_days: MoneyRange,
) -> Tuple[RiskScores, RiskFlags]:
    """
    Calculate tariff, compliance and supply risk for an estimate.
    
    Returns:
        Tuple of (RiskScores with 0-100 scores, RiskFlags)
    """
    prior = get_prior(category_key)
    origin = (analysis.get("origin_country") or "").strip().upper()
    origin_sensitive = origin in SENSITIVE_ORIGINS
    chapters = {code[:2] for code in hs_codes if code and code != SENTINEL_CODE}
    adcvd_possible = bool(analysis.get("adcvd_possible")) or bool(chapters & ADCVD_CHAPTERS)

    # Tariff: duty burden, trade remedies, unresolved classification
    tariff = 10.0 + duty_rate * 200
    if adcvd_possible:
        tariff += 25
    if origin_sensitive:
        tariff += 15
    if not chapters:
        tariff += 15  # no usable HS code
    elif len(chapters) > 1:
        tariff += 10  # candidates span chapters

    # Compliance: category regime plus labeling exposure
    compliance = prior.compliance_base
    compliance += 5 * len(prior.labeling_risks)
    if category_key in (None, GENERAL_MERCH):
        compliance += 10  # regime unknown

    # Supply: lead time and MOQ pressure
    supply = 10.0
    if lead_time_days.max > 45:
        supply += 20
    elif lead_time_days.max > 30:
        supply += 10
    if moq_range.mid > 1000:
        supply += 10
    if origin_sensitive:
        supply += 10

    tariff = min(100, max(0, tariff))
    compliance = min(100, max(0, compliance))
    supply = min(100, max(0, supply))
    total = round(0.4 * tariff + 0.35 * compliance + 0.25 * supply, 1)

    certifications = list(dict.fromkeys(prior.certifications + list(analysis.get("certifications") or [])))
    labeling = list(dict.fromkeys(prior.labeling_risks + list(analysis.get("labeling_risks") or [])))

    scores = RiskScores(
        tariff=round(tariff, 1),
        compliance=round(compliance, 1),
        supply=round(supply, 1),
        total=total,
        level=_level(total),
    )
    flags = RiskFlags(
        hs_code_range=list(dict.fromkeys(hs_codes)),
        adcvd_possible=adcvd_possible,
        origin_sensitive=origin_sensitive,
        required_certifications=certifications,
        labeling_risks=labeling,
        moq_range=moq_range,
        lead_time_days=lead_time_days,
    )
    return scores, flags
