"""
Estimate and report API routes.
"""
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from landedcost.api.audit import record_audit
from landedcost.core.errors import NotFoundError, ValidationError
from landedcost.core.rbac import get_current_user_context, require_operator
from landedcost.db.session import get_db
from landedcost.db.stores import JobStore
from landedcost.services.estimates import (
    apply_manual_label,
    get_report,
    run_evidence_upgrade,
    submit_estimate,
)
from landedcost.services.report_view import build_report_view
from landedcost.services.schemas import EstimateParams, ImageRef, InputImages, SupplierInfo
from landedcost.services.sourcing import create_job, get_statuses, parse_reply
from landedcost.services.vision import VisionProvider, get_vision_provider
from landedcost.workers.jobs import dispatch_report_task, enqueue_outreach_dispatch

router = APIRouter(prefix="/api", tags=["Estimates"])


# ============= SCHEMAS =============

class EstimateRequest(BaseModel):
    product_image: ImageRef
    barcode_image: Optional[ImageRef] = None
    label_image: Optional[ImageRef] = None
    params: EstimateParams = Field(default_factory=EstimateParams)

    def images(self) -> InputImages:
        return InputImages(product=self.product_image, barcode=self.barcode_image, label=self.label_image)


class EstimateResponse(BaseModel):
    report_id: int
    status: str
    cached: bool
    fast_facts: Optional[dict]
    error: Optional[dict] = None


class ManualLabelInput(BaseModel):
    label_text: Optional[str] = None
    net_weight_grams: Optional[float] = Field(None, gt=0)
    units_per_case: Optional[int] = Field(None, gt=0)
    origin_country: Optional[str] = None


class SourcingJobCreate(BaseModel):
    supplier_ids: List[str]
    suppliers: Dict[str, SupplierInfo] = Field(default_factory=dict)


class ParseReplyInput(BaseModel):
    job_supplier_id: int
    text: str

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v


def get_provider() -> VisionProvider:
    return get_vision_provider()


# ============= ROUTES =============

@router.post("/estimate", response_model=EstimateResponse)
async def create_estimate(
    body: EstimateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user_context: dict = Depends(get_current_user_context),
    provider: VisionProvider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    """Fast path: return fast facts now and upgrade the report after the response."""
    submission = await submit_estimate(db, body.images(), body.params, user_context["user_id"], provider=provider)
    report = submission.report

    if submission.task_id is not None:
        background_tasks.add_task(dispatch_report_task, submission.task_id)

    if not submission.cached:
        record_audit(db, request, user_context, "create_estimate", "report", report.id,
                     {"status": report.status, "task_id": submission.task_id})
        db.commit()
        db.refresh(report)

    return EstimateResponse(
        report_id=report.id,
        status=report.status,
        cached=submission.cached,
        fast_facts=report.fast_facts,
        error={"code": report.error_code, "step": report.error_step} if report.error_code else None,
    )


@router.get("/report/{report_id}")
async def read_report(
    report_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db),
):
    """Report projection with a freshly computed quality tier."""
    return build_report_view(get_report(db, report_id, user_context["user_id"]))


@router.post("/report/{report_id}/evidence-upgrade")
async def evidence_upgrade(
    report_id: int,
    request: Request,
    user_context: dict = Depends(get_current_user_context),
    provider: VisionProvider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    """Re-run the import evidence lookup, subject to the active-job and cooldown guards."""
    report = get_report(db, report_id, user_context["user_id"])
    report = await run_evidence_upgrade(db, report, provider=provider)

    record_audit(db, request, user_context, "evidence_upgrade", "report", report.id,
                 {"items": len(report.evidence_items or [])})
    db.commit()
    return build_report_view(report)


@router.post("/report/{report_id}/manual-label")
async def manual_label(
    report_id: int,
    body: ManualLabelInput,
    request: Request,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db),
):
    """Store user-entered label fields and recompute costs."""
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise ValidationError("At least one label field is required")

    report = get_report(db, report_id, user_context["user_id"])
    report = apply_manual_label(db, report, fields)

    record_audit(db, request, user_context, "manual_label", "report", report.id, {"fields": sorted(fields)})
    db.commit()
    return build_report_view(report)


@router.post("/report/{report_id}/sourcing-job")
async def create_sourcing_job(
    report_id: int,
    body: SourcingJobCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db),
):
    """Start verification: create a sourcing job and outreach packs."""
    job = create_job(
        db,
        report_id,
        user_context["user_id"],
        body.supplier_ids,
        suppliers_info=body.suppliers,
        dispatcher=lambda job_supplier_id: background_tasks.add_task(enqueue_outreach_dispatch, job_supplier_id),
    )

    record_audit(db, request, user_context, "create_sourcing_job", "sourcing_job", job.id,
                 {"report_id": report_id, "supplier_ids": job.supplier_ids})
    db.commit()

    return {
        "job_id": job.id,
        "status": job.status,
        "suppliers": [
            {
                "job_supplier_id": s.id,
                "supplier_id": s.supplier_id,
                "status": s.status,
                "dispatch_error": s.dispatch_error,
            }
            for s in job.suppliers
        ],
    }


@router.get("/report/{report_id}/supplier-statuses")
async def supplier_statuses(
    report_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db),
):
    get_report(db, report_id, user_context["user_id"])
    return {"statuses": get_statuses(db, report_id)}


@router.post("/report/{report_id}/parse-reply")
async def parse_supplier_reply(
    report_id: int,
    body: ParseReplyInput,
    request: Request,
    user_context: dict = Depends(require_operator),
    db: Session = Depends(get_db),
):
    """Parse a pasted supplier reply into a quote for that supplier."""
    get_report(db, report_id, user_context["user_id"])
    supplier = JobStore(db).get_supplier(body.job_supplier_id)
    if supplier is None or supplier.job.report_id != report_id:
        raise NotFoundError(f"Job supplier {body.job_supplier_id} not found for report {report_id}")

    parsed, quote = parse_reply(db, supplier.id, body.text)

    record_audit(db, request, user_context, "parse_reply", "job_supplier", supplier.id,
                 {"parser": parsed.parser, "missing_fields": parsed.missing_fields})
    db.commit()

    return {
        "job_supplier_id": supplier.id,
        "parsed": parsed.model_dump(mode="json"),
        "validation_status": quote.validation_status,
        "quote_revision": quote.revision,
    }
