"""
Background upgrade of partial reports.

``upgrade_report`` is idempotent: only a report that is still partial is
touched, and the final write is a compare-and-swap from partial so a late
result never clobbers a report that failed or was corrected meanwhile.
"""
import asyncio
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from landedcost.core.errors import LandedCostError, PipelineFailure
from landedcost.core.logging import get_logger
from landedcost.db.models import Report, ReportStatus
from landedcost.db.stores import ReportStore
from landedcost.services.category_rules import GENERAL_MERCH, categorize
from landedcost.services.classification import resolve_classification
from landedcost.services.evidence import normalize_evidence
from landedcost.services.landed_cost import build_baseline
from landedcost.services.schemas import (
    EstimateParams,
    FastFacts,
    InputImages,
    Signals,
)
from landedcost.services.vision import VisionProvider, get_vision_provider

logger = get_logger(__name__)

UPGRADE_FAILED = "UPGRADE_FAILED"
UPGRADE_STEP = "deep_analysis"


@dataclass
class UpgradeOutcome:
    report_id: int
    result: str  # completed, failed, skipped, stale
    detail: Optional[str] = None


def merge_analysis(facts: FastFacts, analysis: dict) -> FastFacts:
    """Richer analysis values overwrite fast facts; a label-read weight is kept."""
    updates = {}
    if analysis.get("product_name"):
        updates["product_name"] = analysis["product_name"]
    if analysis.get("category"):
        updates["category"] = analysis["category"]
    if facts.weight_source != "label" and analysis.get("weight_kg"):
        updates["weight_kg"] = float(analysis["weight_kg"])
        updates["weight_source"] = "vision"
    if not facts.keywords and analysis.get("keywords"):
        updates["keywords"] = list(analysis["keywords"])[:5]
    if updates:
        updates["confidence"] = max(facts.confidence, 0.7)
    return facts.model_copy(update=updates)


def build_derived_fields(store: ReportStore, report: Report, facts: FastFacts, analysis: dict) -> dict:
    """Classification, signals, evidence and baseline for a report's current inputs."""
    params = EstimateParams(**(report.request_params or {}))
    manual = report.label_confirmed_fields or {}

    category_key, _ = categorize([facts.product_name, facts.category] + list(facts.keywords))
    candidates = resolve_classification(
        vision_code=analysis.get("hs_code"),
        market_candidates=analysis.get("market_candidates") or [],
        category=facts.category or category_key,
    )

    previous = Signals(**(report.signals or {}))
    signals = previous.model_copy(update={
        "has_category_baseline": category_key != GENERAL_MERCH,
        "has_internal_similar_records": store.count_similar_complete(category_key, report.id) > 0,
    })

    evidence = normalize_evidence(
        facts.model_dump(mode="json"),
        report.upload_audit,
        manual=manual,
        candidates=candidates,
        category_key=category_key,
    )
    baseline = build_baseline(
        params,
        facts,
        category_key,
        analysis=analysis,
        manual=manual,
        hs_codes=[c.code for c in candidates],
        label=f"report:{report.id}",
    )
    return {
        "category_key": category_key,
        "classification_candidates": [c.model_dump(mode="json") for c in candidates],
        "signals": signals.model_dump(mode="json"),
        "evidence": evidence.dump(),
        "baseline": baseline.model_dump(mode="json"),
    }


def upgrade_report(
    db: Session,
    report_id: int,
    images: Optional[InputImages] = None,
    provider: Optional[VisionProvider] = None,
) -> UpgradeOutcome:
    """
    Run deep analysis on a partial report and move it to complete.

    Analysis errors move the report to failed with a distinguishable error
    code. Nothing is written if the report is no longer partial.
    """
    store = ReportStore(db)
    report = store.get(report_id)
    if report is None:
        logger.warning(f"[report:{report_id}] upgrade skipped: report not found")
        return UpgradeOutcome(report_id, "skipped", "not_found")
    if report.status != ReportStatus.PARTIAL.value:
        logger.info(f"[report:{report_id}] upgrade skipped: status is {report.status}")
        return UpgradeOutcome(report_id, "skipped", report.status)

    provider = provider or get_vision_provider()
    pipeline_result = dict(report.pipeline_result or {})
    images = images or InputImages(**pipeline_result["images"])

    try:
        analysis = asyncio.run(provider.analyze_product(images, FastFacts(**(report.fast_facts or {}))))
    except (LandedCostError, ValueError, KeyError, TypeError) as e:
        return _fail(store, report_id, e)

    # A manual correction landing mid-analysis bumps the revision; rebuild once from it
    for attempt in range(2):
        revision = report.revision
        facts = merge_analysis(FastFacts(**(report.fast_facts or {})), analysis)
        try:
            derived = build_derived_fields(store, report, facts, analysis)
        except (LandedCostError, ValueError, KeyError, TypeError) as e:
            return _fail(store, report_id, e)

        pipeline_result = dict(report.pipeline_result or {})
        pipeline_result["analysis"] = analysis
        swapped = store.compare_and_swap_status(
            report_id,
            ReportStatus.PARTIAL,
            ReportStatus.COMPLETE,
            expected_revision=revision,
            fast_facts=facts.model_dump(mode="json"),
            pipeline_result=pipeline_result,
            error_code=None,
            error_step=None,
            **derived,
        )
        if swapped:
            logger.info(f"[report:{report_id}] upgraded to complete (category={derived['category_key']})")
            return UpgradeOutcome(report_id, "completed")

        report = store.get(report_id)
        if report is None or report.status != ReportStatus.PARTIAL.value or attempt:
            break
        logger.info(f"[report:{report_id}] report revised during analysis; rebuilding")

    logger.info(f"[report:{report_id}] upgrade result discarded: report changed during analysis")
    return UpgradeOutcome(report_id, "stale")


def _fail(store: ReportStore, report_id: int, error: Exception) -> UpgradeOutcome:
    code = error.code if isinstance(error, PipelineFailure) else UPGRADE_FAILED
    logger.error(f"[report:{report_id}] deep analysis failed: {error}")
    swapped = store.compare_and_swap_status(
        report_id,
        ReportStatus.PARTIAL,
        ReportStatus.FAILED,
        error_code=code,
        error_step=UPGRADE_STEP,
    )
    return UpgradeOutcome(report_id, "failed" if swapped else "stale", str(error))
