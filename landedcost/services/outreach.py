"""
Outreach pack generation for sourcing jobs.

A pack is always complete: six checklist questions, eight product summary lines
and six red flags. The message text comes from the LLM provider when one is
configured and from a template otherwise.
"""
from datetime import datetime, timezone
from typing import List, Optional

from landedcost.core.logging import get_logger
from landedcost.db.models import Report
from landedcost.services.llm_provider import generate_outreach_message
from landedcost.services.schemas import (
    Baseline,
    EstimateParams,
    FastFacts,
    OutreachPack,
    ReportEvidence,
    SupplierInfo,
)

logger = get_logger(__name__)

CHECKLIST_SIZE = 6
SPEC_SUMMARY_SIZE = 8
RED_FLAG_SIZE = 6

Q_MANUFACTURER = "Confirm manufacturer status (not a trader or logistics company)"
Q_PRICING = "Confirm unit price at MOQ and price break tiers"
Q_LEAD_TIME = "Confirm lead time and production capacity per month"
Q_PACKAGING = "Confirm packaging details and carton dimensions"
Q_MATERIALS = "Confirm material composition and required testing"
Q_INCOTERMS = "Confirm Incoterms and what is included in price"

DEFAULT_QUESTIONS = [Q_MANUFACTURER, Q_PRICING, Q_LEAD_TIME, Q_PACKAGING, Q_MATERIALS, Q_INCOTERMS]
PADDING_FLAG = "Standard due diligence recommended"


def build_questions_checklist(weight_known: bool, case_pack_known: bool, hs_candidate_count: int) -> List[str]:
    """
    Six questions, with the ones that fill our data gaps moved to the front.

    Missing weight or case pack puts packaging first; an ambiguous
    classification puts materials ahead of everything but packaging.
    """
    front = []
    if not weight_known or not case_pack_known:
        front.append(Q_PACKAGING)
    if hs_candidate_count > 1:
        front.append(Q_MATERIALS)
    rest = [q for q in DEFAULT_QUESTIONS if q not in front]
    return (front + rest)[:CHECKLIST_SIZE]


def _money(value: Optional[float]) -> str:
    return f"${value:.2f}"


def build_spec_summary(
    product_name: str,
    category: str,
    baseline: Optional[Baseline],
    params: EstimateParams,
    certifications: List[str],
) -> List[str]:
    lines = [f"Product: {product_name}", f"Category: {category}"]
    if baseline is not None:
        standard = baseline.cost_range.standard
        lines.append(f"Estimated FOB range: {_money(baseline.unit_price.min)} - {_money(baseline.unit_price.max)}")
        lines.append(f"Estimated shipping: {_money(standard.shipping)} per unit ({params.shipping_mode})")
        lines.append(f"Estimated duty: {_money(standard.duty)} per unit")
    else:
        lines += ["Price range: To be confirmed", "Shipping: To be confirmed", "Duty: To be confirmed"]
    lines.append(f"Quantity needed: {params.quantity}")
    lines.append(f"Destination: {params.destination}")
    if certifications:
        lines.append(f"Certifications required: {', '.join(certifications)}")
    else:
        lines.append(f"Certifications required: {category} category standards")
    return lines[:SPEC_SUMMARY_SIZE]


def build_red_flags(info: SupplierInfo) -> List[str]:
    company_type = (info.company_type or "").lower()
    flags = [
        "May be logistics company, not manufacturer" if company_type == "logistics" else None,
        "No import history found in our dataset" if not info.has_import_history else None,
        "Manufacturer status not confirmed" if company_type in ("", "unknown") else None,
        "HS code alignment unclear" if not info.top_hs_codes else None,
        "May be trading company, not direct manufacturer" if "trading" in company_type else None,
        "Verify certifications match your destination country requirements",
    ]
    flags = [f for f in flags if f]
    while len(flags) < RED_FLAG_SIZE:
        flags.append(PADDING_FLAG)
    return flags[:RED_FLAG_SIZE]


def generate_outreach_pack(supplier_id: str, info: Optional[SupplierInfo], report: Report) -> OutreachPack:
    """Build the outreach pack for one supplier from a complete report."""
    info = info or SupplierInfo()
    facts = FastFacts(**(report.fast_facts or {}))
    params = EstimateParams(**(report.request_params or {}))
    baseline = Baseline(**report.baseline) if report.baseline else None
    evidence = ReportEvidence.load(report.evidence)

    product_name = facts.product_name or "product"
    category = facts.category or (report.category_key or "general merchandise").replace("_", " ")
    certifications = baseline.risk_flags.required_certifications if baseline else []

    questions = build_questions_checklist(
        weight_known=evidence.weight.confirmed,
        case_pack_known=evidence.label.case_pack_known,
        hs_candidate_count=len(report.classification_candidates or []),
    )
    message = generate_outreach_message({
        "supplier_name": info.name or supplier_id,
        "product_name": product_name,
        "category": category,
        "destination": params.destination,
        "quantity": params.quantity,
        "shipping_mode": params.shipping_mode,
        "questions": questions,
    })
    logger.debug(f"[report:{report.id}] outreach pack built for supplier {supplier_id}")
    return OutreachPack(
        outreach_message=message,
        questions_checklist=questions,
        spec_summary=build_spec_summary(product_name, category, baseline, params, certifications),
        red_flags=build_red_flags(info),
        generated_at=datetime.now(timezone.utc),
    )
