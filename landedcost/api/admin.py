"""
Admin API routes - outbox maintenance.
Requires ADMIN role for all endpoints.
"""
from typing import List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from landedcost.api.audit import record_audit
from landedcost.core.rbac import require_admin
from landedcost.db.models import ReportTask
from landedcost.db.session import get_db
from landedcost.workers.jobs import drain_report_tasks

router = APIRouter(prefix="/api/admin", tags=["Admin"])


# ============= SCHEMAS =============

class ReportTaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    report_id: int
    kind: str
    status: str
    attempts: int
    last_error: Optional[str]
    created_at: Optional[datetime]
    dispatched_at: Optional[datetime]
    completed_at: Optional[datetime]


# ============= ROUTES =============

@router.get("/outbox", response_model=List[ReportTaskResponse])
async def list_outbox(
    status: Optional[str] = Query(None, description="Filter by task status"),
    limit: int = Query(100, le=500),
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """List background upgrade tasks."""
    query = db.query(ReportTask)
    if status:
        query = query.filter(ReportTask.status == status)
    return [ReportTaskResponse.model_validate(t) for t in query.order_by(ReportTask.id.desc()).limit(limit).all()]


@router.post("/outbox/drain")
def drain_outbox(
    request: Request,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Dispatch pending and stale upgrade tasks now instead of waiting for the worker."""
    dispatched = drain_report_tasks(db)

    record_audit(db, request, user_context, "drain_outbox", "report_task", None, {"dispatched": dispatched})
    db.commit()
    return {"dispatched": dispatched}
