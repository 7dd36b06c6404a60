"""
Sourcing job state machine.

Jobs move forward only: pending -> outreach_sent -> replies_received ->
quotes_confirmed -> closed. The stored job status is rolled up from its
suppliers after each supplier transition except quote recording, and
``closed`` is reached only through ``close_job``.
"""
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from landedcost.core.errors import NotFoundError, ValidationError, VerificationActiveError
from landedcost.core.logging import get_logger
from landedcost.db.models import (
    JOB_STATUS_ORDER,
    JobStatus,
    JobSupplier,
    QuoteValidationStatus,
    ReportStatus,
    SourcingJob,
    SupplierQuote,
    SupplierStatus,
)
from landedcost.db.stores import JobStore, ReportStore, utcnow
from landedcost.services.llm_provider import parse_supplier_reply
from landedcost.services.outreach import generate_outreach_pack
from landedcost.services.schemas import (
    Baseline,
    ParsedReply,
    QuoteInput,
    SupplierInfo,
    Verification,
)

logger = get_logger(__name__)

# Quoted price must sit within this multiple of the baseline unit price range
PRICE_LOWER_FACTOR = 0.25
PRICE_UPPER_FACTOR = 4.0

REQUIRED_QUOTE_TERMS = ("price_per_unit", "moq", "lead_time_days")

REPLIED_STATES = {SupplierStatus.REPLIED.value, SupplierStatus.QUOTE_RECEIVED.value, SupplierStatus.CONFIRMED.value}
QUOTABLE_STATES = {
    SupplierStatus.OUTREACH_SENT.value,
    SupplierStatus.REPLIED.value,
    SupplierStatus.NO_REPLY.value,
    SupplierStatus.QUOTE_RECEIVED.value,
    SupplierStatus.CONFIRMED.value,
}

Dispatcher = Callable[[int], object]


def _rank(status: str) -> int:
    return JOB_STATUS_ORDER.index(JobStatus(status))


def derive_job_status(job: SourcingJob) -> JobStatus:
    """Roll supplier states up into a job status that never moves backwards."""
    if job.status == JobStatus.CLOSED.value:
        return JobStatus.CLOSED

    suppliers = list(job.suppliers)
    if any(s.quote is not None and s.quote.confirmed_in_writing for s in suppliers):
        rolled = JobStatus.QUOTES_CONFIRMED
    elif any(s.status in REPLIED_STATES or s.quote is not None for s in suppliers):
        rolled = JobStatus.REPLIES_RECEIVED
    elif any(s.status != SupplierStatus.PENDING.value for s in suppliers):
        rolled = JobStatus.OUTREACH_SENT
    else:
        rolled = JobStatus.PENDING

    current = JobStatus(job.status)
    return rolled if _rank(rolled.value) > _rank(current.value) else current


def _roll_up(db: Session, job: SourcingJob) -> SourcingJob:
    derived = derive_job_status(job)
    if derived.value != job.status:
        logger.info(f"[job:{job.id}] {job.status} -> {derived.value}")
        job.status = derived.value
        db.commit()
    return job


def create_job(
    db: Session,
    report_id: int,
    owner_id: str,
    supplier_ids: List[str],
    suppliers_info: Optional[Dict[str, SupplierInfo]] = None,
    dispatcher: Optional[Dispatcher] = None,
) -> SourcingJob:
    """
    Create a sourcing job and attach an outreach pack to each supplier.

    A supplier whose pack cannot be built stays pending with the error
    recorded; the others proceed. ``dispatcher`` is called with each sent
    job supplier id after its pack is committed, and its failures are logged
    only.

    Raises:
        ValidationError: no suppliers, or the report is not complete
        NotFoundError: unknown report
        VerificationActiveError: the report already has an open job
    """
    ids = list(dict.fromkeys(s.strip() for s in supplier_ids if s and s.strip()))
    if not ids:
        raise ValidationError("At least one supplier id is required")

    report = ReportStore(db).get(report_id)
    if report is None or report.owner_id != owner_id:
        raise NotFoundError(f"Report {report_id} not found")
    if report.status != ReportStatus.COMPLETE.value:
        raise ValidationError(f"Report {report_id} is {report.status}; sourcing requires a complete report")

    store = JobStore(db)
    if store.has_open_job(report_id):
        raise VerificationActiveError("Verification already active for this report")

    suppliers_info = suppliers_info or {}
    job = store.create_job(report_id, owner_id, ids)
    rows = [
        store.add_supplier(job, sid, (suppliers_info.get(sid) or SupplierInfo()).name)
        for sid in ids
    ]
    db.commit()
    logger.info(f"[job:{job.id}] created for report {report_id} with {len(rows)} suppliers")

    sent = []
    for row in rows:
        try:
            pack = generate_outreach_pack(row.supplier_id, suppliers_info.get(row.supplier_id), report)
        except Exception as e:
            logger.error(f"[job:{job.id}] outreach pack failed for supplier {row.supplier_id}: {e}")
            row.dispatch_error = str(e)[:2000]
            db.commit()
            continue
        # Pack lands in the same commit as the status flip
        row.outreach_pack = pack.model_dump(mode="json")
        row.status = SupplierStatus.OUTREACH_SENT.value
        row.dispatch_error = None
        db.commit()
        sent.append(row.id)

    if sent:
        store.compare_and_swap_job_status(job.id, JobStatus.PENDING, JobStatus.OUTREACH_SENT)

    if dispatcher is not None:
        for job_supplier_id in sent:
            try:
                dispatcher(job_supplier_id)
            except Exception as e:
                logger.error(f"[job:{job.id}] dispatch failed for job supplier {job_supplier_id}: {e}")

    return store.get_job(job.id)


def _open_supplier(db: Session, job_supplier_id: int) -> JobSupplier:
    supplier = JobStore(db).get_supplier(job_supplier_id)
    if supplier is None:
        raise NotFoundError(f"Job supplier {job_supplier_id} not found")
    if supplier.job.status == JobStatus.CLOSED.value:
        raise ValidationError(f"Job {supplier.job_id} is closed")
    return supplier


def record_reply(db: Session, job_supplier_id: int, replied: bool = True) -> JobSupplier:
    """Mark that a supplier answered, or that the outreach went unanswered."""
    supplier = _open_supplier(db, job_supplier_id)
    if supplier.status == SupplierStatus.PENDING.value:
        raise ValidationError(f"Outreach was never sent to supplier {supplier.supplier_id}")
    if supplier.status in REPLIED_STATES:
        return supplier

    if replied:
        supplier.status = SupplierStatus.REPLIED.value
        supplier.replied_at = utcnow()
    elif supplier.status == SupplierStatus.OUTREACH_SENT.value:
        supplier.status = SupplierStatus.NO_REPLY.value
    db.commit()
    _roll_up(db, supplier.job)
    return supplier


def validate_quote(quote: QuoteInput, baseline: Optional[Baseline]) -> Tuple[str, List[str]]:
    """Return (validation_status, missing terms) for a quote against the report baseline."""
    missing = [f for f in REQUIRED_QUOTE_TERMS if getattr(quote, f) is None]
    if quote.validation_status:
        return quote.validation_status, missing
    if missing:
        return QuoteValidationStatus.NEEDS_REVIEW.value, missing
    if baseline is not None:
        low = baseline.unit_price.min * PRICE_LOWER_FACTOR
        high = baseline.unit_price.max * PRICE_UPPER_FACTOR
        if not low <= quote.price_per_unit <= high:
            return QuoteValidationStatus.NEEDS_REVIEW.value, missing
    return QuoteValidationStatus.VALID.value, missing


def _append_verification(db: Session, supplier: JobSupplier, quote: SupplierQuote):
    report = supplier.job.report
    verification = Verification(
        quoted=True,
        quote_date=datetime.now(timezone.utc),
        quote_price=quote.price_per_unit,
        job_supplier_id=supplier.id,
    )
    ReportStore(db).update(report, verification=verification.model_dump(mode="json"))
    logger.info(f"[report:{report.id}] verified by quote from job supplier {supplier.id}")


def record_quote(db: Session, job_supplier_id: int, quote: QuoteInput) -> SupplierQuote:
    """
    Store the supplier's quote, superseding any earlier one.

    The job's stored status is left alone; ``derive_job_status`` picks the
    quote up on the next rollup.
    """
    supplier = _open_supplier(db, job_supplier_id)
    if supplier.status not in QUOTABLE_STATES:
        raise ValidationError(f"Supplier {supplier.supplier_id} has not been contacted")

    report = supplier.job.report
    baseline = Baseline(**report.baseline) if report.baseline else None
    validation_status, missing = validate_quote(quote, baseline)

    fields = quote.model_dump(exclude={"validation_status"})
    stored = JobStore(db).upsert_quote(
        supplier,
        validation_status=validation_status,
        missing_fields=missing,
        **fields,
    )
    # Supplier status never moves back from confirmed
    if quote.confirmed_in_writing or supplier.status == SupplierStatus.CONFIRMED.value:
        supplier.status = SupplierStatus.CONFIRMED.value
    else:
        supplier.status = SupplierStatus.QUOTE_RECEIVED.value
    if supplier.replied_at is None:
        supplier.replied_at = utcnow()
    db.commit()
    db.refresh(stored)
    logger.info(f"[job:{supplier.job_id}] quote r{stored.revision} from {supplier.supplier_id}: {validation_status}")

    if quote.confirmed_in_writing:
        _append_verification(db, supplier, stored)
    return stored


def confirm_quote(db: Session, job_supplier_id: int) -> SupplierQuote:
    """Mark the supplier's active quote as confirmed in writing."""
    supplier = _open_supplier(db, job_supplier_id)
    quote = supplier.quote
    if quote is None:
        raise ValidationError(f"Supplier {supplier.supplier_id} has no quote to confirm")

    quote.confirmed_in_writing = True
    supplier.status = SupplierStatus.CONFIRMED.value
    db.commit()
    _append_verification(db, supplier, quote)
    _roll_up(db, supplier.job)
    return quote


def parse_reply(db: Session, job_supplier_id: int, text: str) -> Tuple[ParsedReply, SupplierQuote]:
    """Parse a supplier's reply text and record it as a reply plus a quote."""
    if not text or not text.strip():
        raise ValidationError("Reply text is required")
    raw = parse_supplier_reply(text)
    parsed = ParsedReply(
        quote=QuoteInput(
            price_per_unit=raw.get("price_per_unit") or None,
            currency=raw.get("currency") or "USD",
            moq=raw.get("moq") or None,
            lead_time_days=raw.get("lead_time_days"),
            incoterm=raw.get("incoterm"),
            payment_terms=raw.get("payment_terms"),
            raw_reply=text,
        ),
        missing_fields=raw.get("missing_fields") or [],
        followup_message=raw.get("followup_message"),
        parser=raw.get("parser", "regex"),
    )
    record_reply(db, job_supplier_id, replied=True)
    quote = record_quote(db, job_supplier_id, parsed.quote)
    return parsed, quote


def close_job(db: Session, job_id: int, owner_id: Optional[str] = None) -> SourcingJob:
    store = JobStore(db)
    job = store.get_job(job_id)
    if job is None or (owner_id is not None and job.owner_id != owner_id):
        raise NotFoundError(f"Sourcing job {job_id} not found")
    if job.status != JobStatus.CLOSED.value:
        store.compare_and_swap_job_status(job.id, JobStatus(job.status), JobStatus.CLOSED, closed_at=utcnow())
        logger.info(f"[job:{job_id}] closed")
    return store.get_job(job_id)


def get_statuses(db: Session, report_id: int) -> Dict[str, dict]:
    """Supplier status map across the report's open jobs; empty when none."""
    statuses: Dict[str, dict] = {}
    for job in JobStore(db).jobs_for_report(report_id, include_closed=False):
        for supplier in job.suppliers:
            quote = supplier.quote
            statuses[supplier.supplier_id] = {
                "job_id": job.id,
                "job_supplier_id": supplier.id,
                "status": supplier.status,
                "has_quote": quote is not None,
                "confirmed_in_writing": bool(quote and quote.confirmed_in_writing),
                "validation_status": quote.validation_status if quote else None,
            }
    return statuses
