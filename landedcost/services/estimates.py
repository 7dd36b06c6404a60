"""
Estimate orchestration: fast path, manual label corrections, evidence upgrades.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from landedcost.core.config import settings
from landedcost.core.errors import CooldownError, NotFoundError, PipelineFailure, ValidationError, VerificationActiveError
from landedcost.core.logging import get_logger
from landedcost.db.models import LabelExtractionStatus, Report, ReportStatus
from landedcost.db.stores import JobStore, OutboxStore, ReportStore
from landedcost.services.cache_key import build_key_inputs, compute_cache_key
from landedcost.services.evidence import get_evidence_cooldown
from landedcost.services.fast_extract import FAST_FACTS_FAILED, FAST_FACTS_STEP, extract_fast_facts
from landedcost.services.schemas import (
    CURRENT_SCHEMA_VERSION,
    EstimateParams,
    FastFacts,
    InputImages,
    Signals,
    Verification,
)
from landedcost.services.upgrader import build_derived_fields
from landedcost.services.vision import VisionProvider, get_vision_provider

logger = get_logger(__name__)


@dataclass
class EstimateSubmission:
    report: Report
    cached: bool
    task_id: Optional[int] = None


def _label_status(audit: dict) -> str:
    if not audit.get("label_uploaded"):
        return LabelExtractionStatus.NOT_PROVIDED.value
    if audit.get("label_status") == "success":
        return LabelExtractionStatus.SUCCESS.value
    return LabelExtractionStatus.FAILED.value


async def submit_estimate(
    db: Session,
    images: InputImages,
    params: EstimateParams,
    owner_id: str,
    provider: Optional[VisionProvider] = None,
) -> EstimateSubmission:
    """
    Look up or create the report for this request and run the fast path.

    A cache hit returns the stored report untouched. A previously failed
    report with the same key is retried in place, as is a partial report
    whose fast path never wrote its facts.
    """
    store = ReportStore(db)
    key = compute_cache_key(build_key_inputs(images, params, owner_id, settings.PIPELINE_VERSION))

    report, created = store.create_if_absent(
        key,
        owner_id=owner_id,
        request_params=params.model_dump(mode="json"),
        schema_version=CURRENT_SCHEMA_VERSION,
    )
    if not created:
        if store.is_orphaned(report, settings.FAST_PATH_STALE_SECONDS):
            # Fast path died before writing facts; take the row over once
            if not store.compare_and_swap_status(report.id, ReportStatus.PARTIAL, ReportStatus.PARTIAL,
                                                 expected_revision=report.revision):
                return EstimateSubmission(report=store.get(report.id), cached=True)
            logger.warning(f"[report:{report.id}] fast path never finished; retrying")
            report = store.get(report.id)
        elif report.status != ReportStatus.FAILED.value:
            logger.info(f"[report:{report.id}] cache hit ({report.status})")
            return EstimateSubmission(report=report, cached=True)
        elif not store.compare_and_swap_status(report.id, ReportStatus.FAILED, ReportStatus.PARTIAL,
                                               error_code=None, error_step=None):
            return EstimateSubmission(report=store.get(report.id), cached=True)
        else:
            logger.info(f"[report:{report.id}] retrying previously failed report")
            report = store.get(report.id)

    return await run_fast_path(db, report, images, provider=provider)


def _fail_fast_path(store: ReportStore, report: Report, error: PipelineFailure) -> EstimateSubmission:
    store.compare_and_swap_status(
        report.id,
        ReportStatus.PARTIAL,
        ReportStatus.FAILED,
        error_code=error.code,
        error_step=error.step,
        upload_audit={"error": error.message},
    )
    return EstimateSubmission(report=store.get(report.id), cached=False)


async def run_fast_path(
    db: Session,
    report: Report,
    images: InputImages,
    provider: Optional[VisionProvider] = None,
) -> EstimateSubmission:
    """Write fast facts and the upgrade task in one commit, or fail the report."""
    store = ReportStore(db)
    request_id = f"report:{report.id}"
    try:
        extraction = await extract_fast_facts(images, request_id, provider=provider)
    except PipelineFailure as e:
        logger.error(f"[{request_id}] fast path failed: {e}")
        return _fail_fast_path(store, report, e)
    except Exception as e:
        db.rollback()
        logger.exception(f"[{request_id}] fast path raised {type(e).__name__}")
        return _fail_fast_path(
            store, report, PipelineFailure(FAST_FACTS_FAILED, FAST_FACTS_STEP, f"{type(e).__name__}: {e}")
        )

    report.fast_facts = extraction.facts.model_dump(mode="json")
    report.upload_audit = extraction.audit
    report.label_extraction_status = _label_status(extraction.audit)
    report.pipeline_result = {
        "images": images.model_dump(mode="json"),
        "fast_facts": report.fast_facts,
    }
    task = OutboxStore(db).add(report.id)
    db.commit()
    db.refresh(report)
    logger.info(f"[{request_id}] fast path complete; upgrade task {task.id} queued")
    return EstimateSubmission(report=report, cached=False, task_id=task.id)


def get_report(db: Session, report_id: int, owner_id: Optional[str] = None) -> Report:
    report = ReportStore(db).get(report_id)
    if report is None or (owner_id is not None and report.owner_id != owner_id):
        raise NotFoundError(f"Report {report_id} not found")
    return report


def apply_manual_label(db: Session, report: Report, fields: dict) -> Report:
    """
    Store user-entered label fields and recompute derived data.

    Manual values override automated extraction in the evidence records and
    drive weight-based shipping in the baseline.
    """
    if report.status == ReportStatus.FAILED.value:
        raise ValidationError("Cannot apply a manual label to a failed report")

    manual = dict(report.label_confirmed_fields or {})
    manual.update({k: v for k, v in fields.items() if v is not None})
    manual["confirmed_at"] = datetime.now(timezone.utc).isoformat()

    store = ReportStore(db)
    updates = {
        "label_confirmed_fields": manual,
        "label_extraction_status": LabelExtractionStatus.MANUAL.value,
    }
    if report.status == ReportStatus.COMPLETE.value:
        report.label_confirmed_fields = manual
        facts = FastFacts(**(report.fast_facts or {}))
        analysis = (report.pipeline_result or {}).get("analysis") or {}
        updates.update(build_derived_fields(store, report, facts, analysis))

    logger.info(f"[report:{report.id}] manual label applied: {sorted(k for k in fields if fields[k] is not None)}")
    return store.update(report, **updates)


async def run_evidence_upgrade(
    db: Session,
    report: Report,
    provider: Optional[VisionProvider] = None,
    now: Optional[datetime] = None,
) -> Report:
    """
    Re-run the import-evidence lookup for a report.

    Raises:
        VerificationActiveError: an open sourcing job exists, or a quote already
            verifies the report
        CooldownError: called again inside the cooldown window
    """
    if JobStore(db).has_open_job(report.id):
        raise VerificationActiveError("Verification already active for this report")
    if Verification(**(report.verification or {})).quoted:
        raise VerificationActiveError("Report is already verified by a supplier quote")

    signals = Signals(**(report.signals or {}))
    allowed, retry_after = get_evidence_cooldown(
        signals, report.evidence_last_attempt_at, report.evidence_last_success_at, now=now,
    )
    if not allowed:
        raise CooldownError(retry_after)

    provider = provider or get_vision_provider()
    facts = FastFacts(**(report.fast_facts or {}))
    now = now or datetime.now(timezone.utc)
    items = await provider.lookup_import_evidence(facts.keywords, facts.category)

    updates = {"evidence_last_attempt_at": now}
    if items:
        updates["evidence_last_success_at"] = now
        updates["evidence_items"] = items
        updates["signals"] = signals.model_copy(update={"has_import_evidence": True}).model_dump(mode="json")
    logger.info(f"[report:{report.id}] evidence upgrade found {len(items)} import records")
    return ReportStore(db).update(report, **updates)
