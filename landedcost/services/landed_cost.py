"""
Landed cost baseline builder.

Per unit: unit_price * (1 + duty_rate) + shipping + fee, where user-supplied
shipping and fee totals are spread over the order quantity.
"""
from typing import Optional

from landedcost.core.logging import get_logger
from landedcost.services.category_rules import SHIPPING_RATE_PER_KG, get_prior
from landedcost.services.cost_range import normalize_baseline, normalize_range
from landedcost.services.risk_scoring import calculate_risk
from landedcost.services.schemas import (
    Baseline,
    CostBreakdown,
    CostRange,
    EstimateParams,
    FastFacts,
    MoneyRange,
)

logger = get_logger(__name__)

# Spread applied to shipping and duty for the optimistic / conservative cases
OPTIMISTIC_FACTOR = {"shipping": 0.85, "duty": 0.9}
CONSERVATIVE_FACTOR = {"shipping": 1.2, "duty": 1.15}


def _breakdown(unit_price: float, shipping: float, duty_rate: float, fee: float) -> CostBreakdown:
    duty = unit_price * duty_rate
    return CostBreakdown(
        unit_price=round(unit_price, 4),
        shipping=round(shipping, 4),
        duty=round(duty, 4),
        fee=round(fee, 4),
        total_landed=round(unit_price + duty + shipping + fee, 4),
    )


def _range_from(values, label: str) -> MoneyRange:
    lo, mid, hi = (float(v) for v in values)
    return normalize_range(MoneyRange(min=lo, mid=mid, max=hi), label)


def resolve_weight_kg(facts: FastFacts, manual: Optional[dict], category_key: Optional[str]) -> float:
    """Manual net weight wins, then extracted weight, then category default."""
    if manual and manual.get("net_weight_grams"):
        return float(manual["net_weight_grams"]) / 1000.0
    if facts.weight_kg:
        return facts.weight_kg
    return get_prior(category_key).weight_kg


def shipping_per_unit(params: EstimateParams, weight_kg: float) -> float:
    if params.shipping_cost is not None:
        return params.shipping_cost / params.quantity
    return weight_kg * SHIPPING_RATE_PER_KG[params.shipping_mode]


def build_baseline(
    params: EstimateParams,
    facts: FastFacts,
    category_key: Optional[str],
    analysis: Optional[dict] = None,
    manual: Optional[dict] = None,
    hs_codes: Optional[list] = None,
    label: Optional[str] = None,
) -> Baseline:
    """
    Compute the cost range triple and risk for a report.

    Args:
        params: Request parameters (quantity, duty, shipping, fee, mode)
        facts: Current fast facts
        category_key: Category from ``category_rules.categorize``
        analysis: Deep analysis payload; its price, MOQ and lead-time ranges
            override the category priors when present
        manual: Manually confirmed label fields
        hs_codes: Classification candidate codes, best first
        label: Log prefix for range repairs
    """
    analysis = analysis or {}
    label = label or "baseline"
    prior = get_prior(category_key)

    unit_price = _range_from(analysis.get("unit_price_range") or prior.fob_range, f"{label}.unit_price")
    duty_rate = params.duty_rate if params.duty_rate is not None else prior.duty_rate
    fee = params.fee / params.quantity if params.fee is not None else prior.fee_per_unit
    weight_kg = resolve_weight_kg(facts, manual, category_key)
    shipping = shipping_per_unit(params, weight_kg)

    optimistic = _breakdown(
        unit_price.min, shipping * OPTIMISTIC_FACTOR["shipping"],
        duty_rate * OPTIMISTIC_FACTOR["duty"], fee,
    )
    standard = _breakdown(unit_price.mid, shipping, duty_rate, fee)
    conservative = _breakdown(
        unit_price.max, shipping * CONSERVATIVE_FACTOR["shipping"],
        duty_rate * CONSERVATIVE_FACTOR["duty"], fee,
    )

    scores, flags = calculate_risk(
        category_key=category_key,
        duty_rate=duty_rate,
        hs_codes=hs_codes or [],
        analysis=analysis,
        moq_range=_range_from(analysis.get("moq_range") or prior.moq_range, f"{label}.moq_range"),
        lead_time_days=_range_from(analysis.get("lead_time_days") or prior.lead_time_days, f"{label}.lead_time_days"),
    )

    baseline = Baseline(
        cost_range=CostRange(conservative=conservative, standard=standard),
        total_landed=MoneyRange(
            min=optimistic.total_landed,
            mid=standard.total_landed,
            max=conservative.total_landed,
        ),
        unit_price=unit_price,
        risk_scores=scores,
        risk_flags=flags,
        assumptions={
            "quantity": float(params.quantity),
            "duty_rate": duty_rate,
            "shipping_mode": params.shipping_mode,
            "weight_kg": round(weight_kg, 4),
            "shipping_per_unit": round(shipping, 4),
            "fee_per_unit": round(fee, 4),
            "category_key": category_key,
        },
    )
    return normalize_baseline(baseline, label)
