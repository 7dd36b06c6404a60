"""
Cost range normalization.

Every money range surfaced by the service passes through ``normalize_range``,
which enforces ``min <= mid <= max``. Any repair is logged with the original
and repaired values so the upstream computation can be fixed.
"""
from typing import Optional

from landedcost.core.logging import get_logger
from landedcost.services.schemas import Baseline, MoneyRange

logger = get_logger(__name__)


def normalize_range(rng: MoneyRange, label: Optional[str] = None) -> MoneyRange:
    """Swap inverted bounds and clamp mid into [min, max]. Idempotent."""
    lo, mid, hi = rng.min, rng.mid, rng.max
    if lo > hi:
        lo, hi = hi, lo
    if mid < lo:
        mid = lo
    elif mid > hi:
        mid = hi

    if (lo, mid, hi) == (rng.min, rng.mid, rng.max):
        return rng

    logger.warning(
        f"[range:{label or 'unlabeled'}] normalized "
        f"min={rng.min} mid={rng.mid} max={rng.max} -> min={lo} mid={mid} max={hi}"
    )
    return rng.model_copy(update={"min": lo, "mid": mid, "max": hi})


def normalize_baseline(baseline: Baseline, label: Optional[str] = None) -> Baseline:
    """Normalize every range in a baseline and keep conservative totals at or above standard."""
    prefix = f"{label}." if label else ""
    updates = {
        "total_landed": normalize_range(baseline.total_landed, f"{prefix}total_landed"),
        "unit_price": normalize_range(baseline.unit_price, f"{prefix}unit_price"),
    }

    flags = baseline.risk_flags
    flag_updates = {}
    if flags.moq_range is not None:
        flag_updates["moq_range"] = normalize_range(flags.moq_range, f"{prefix}moq_range")
    if flags.lead_time_days is not None:
        flag_updates["lead_time_days"] = normalize_range(flags.lead_time_days, f"{prefix}lead_time_days")
    if flag_updates:
        updates["risk_flags"] = flags.model_copy(update=flag_updates)

    cost_range = baseline.cost_range
    if cost_range.conservative.total_landed < cost_range.standard.total_landed:
        logger.warning(
            f"[range:{prefix}cost_range] conservative total "
            f"{cost_range.conservative.total_landed} below standard "
            f"{cost_range.standard.total_landed}; swapping"
        )
        updates["cost_range"] = cost_range.model_copy(update={
            "conservative": cost_range.standard,
            "standard": cost_range.conservative,
        })

    return baseline.model_copy(update=updates)
