"""
Sourcing job API routes - supplier replies, quotes and job closure.
"""
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from landedcost.api.audit import record_audit
from landedcost.core.errors import NotFoundError
from landedcost.core.rbac import get_current_user_context, require_operator
from landedcost.db.models import JobSupplier, SourcingJob
from landedcost.db.session import get_db
from landedcost.db.stores import JobStore
from landedcost.services.schemas import QuoteInput
from landedcost.services.sourcing import (
    close_job,
    confirm_quote,
    derive_job_status,
    record_quote,
    record_reply,
)

router = APIRouter(prefix="/api/sourcing", tags=["Sourcing"])


# ============= SCHEMAS =============

class ReplyInput(BaseModel):
    replied: bool = True


# ============= HELPERS =============

def _owned_supplier(db: Session, job_supplier_id: int, owner_id: str) -> JobSupplier:
    supplier = JobStore(db).get_supplier(job_supplier_id)
    if supplier is None or supplier.job.owner_id != owner_id:
        raise NotFoundError(f"Job supplier {job_supplier_id} not found")
    return supplier


def _quote_dict(quote) -> dict:
    if quote is None:
        return None
    return {
        "price_per_unit": quote.price_per_unit,
        "currency": quote.currency,
        "moq": quote.moq,
        "lead_time_days": quote.lead_time_days,
        "incoterm": quote.incoterm,
        "payment_terms": quote.payment_terms,
        "confirmed_in_writing": quote.confirmed_in_writing,
        "validation_status": quote.validation_status,
        "missing_fields": quote.missing_fields or [],
        "revision": quote.revision,
    }


def _job_dict(job: SourcingJob) -> dict:
    return {
        "job_id": job.id,
        "report_id": job.report_id,
        "status": derive_job_status(job).value,
        "stored_status": job.status,
        "closed_at": job.closed_at.isoformat() if job.closed_at else None,
        "suppliers": [
            {
                "job_supplier_id": s.id,
                "supplier_id": s.supplier_id,
                "supplier_name": s.supplier_name,
                "status": s.status,
                "dispatch_error": s.dispatch_error,
                "outreach_pack": s.outreach_pack,
                "quote": _quote_dict(s.quote),
            }
            for s in job.suppliers
        ],
    }


# ============= ROUTES =============

@router.get("/jobs/{job_id}")
async def get_job(
    job_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db),
):
    job = JobStore(db).get_job(job_id)
    if job is None or job.owner_id != user_context["user_id"]:
        raise NotFoundError(f"Sourcing job {job_id} not found")
    return _job_dict(job)


@router.post("/suppliers/{job_supplier_id}/reply")
async def supplier_reply(
    job_supplier_id: int,
    body: ReplyInput,
    request: Request,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db),
):
    """Record that a supplier replied, or went quiet."""
    _owned_supplier(db, job_supplier_id, user_context["user_id"])
    supplier = record_reply(db, job_supplier_id, replied=body.replied)

    record_audit(db, request, user_context, "record_reply", "job_supplier", supplier.id, {"replied": body.replied})
    db.commit()
    return {"job_supplier_id": supplier.id, "status": supplier.status}


@router.post("/suppliers/{job_supplier_id}/quote")
async def supplier_quote(
    job_supplier_id: int,
    body: QuoteInput,
    request: Request,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db),
):
    """Record a quote; any earlier quote from this supplier is superseded."""
    _owned_supplier(db, job_supplier_id, user_context["user_id"])
    quote = record_quote(db, job_supplier_id, body)

    record_audit(db, request, user_context, "record_quote", "job_supplier", job_supplier_id,
                 {"validation_status": quote.validation_status, "revision": quote.revision})
    db.commit()
    return {"job_supplier_id": job_supplier_id, "quote": _quote_dict(quote)}


@router.post("/suppliers/{job_supplier_id}/confirm")
async def supplier_confirm(
    job_supplier_id: int,
    request: Request,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db),
):
    """Mark the supplier's current quote as confirmed in writing."""
    _owned_supplier(db, job_supplier_id, user_context["user_id"])
    quote = confirm_quote(db, job_supplier_id)

    record_audit(db, request, user_context, "confirm_quote", "job_supplier", job_supplier_id,
                 {"price_per_unit": quote.price_per_unit})
    db.commit()
    return {"job_supplier_id": job_supplier_id, "quote": _quote_dict(quote)}


@router.post("/jobs/{job_id}/close")
async def close_sourcing_job(
    job_id: int,
    request: Request,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db),
):
    job = close_job(db, job_id, owner_id=user_context["user_id"])

    record_audit(db, request, user_context, "close_sourcing_job", "sourcing_job", job.id)
    db.commit()
    return _job_dict(job)
