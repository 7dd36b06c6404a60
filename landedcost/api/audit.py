"""
Audit Log API routes.
"""
from typing import List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session
from sqlalchemy import desc

from landedcost.db.session import get_db
from landedcost.db.models import AuditLog
from landedcost.core.logging import audit_logger
from landedcost.core.rbac import require_admin

router = APIRouter(prefix="/api/audit", tags=["Audit"])


def record_audit(
    db: Session,
    request: Request,
    user_context: dict,
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    details: Optional[dict] = None,
):
    """Stage an audit row and emit the audit log line. The caller commits."""
    db.add(AuditLog(
        user_id=user_context["user_id"],
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=request.client.host if request.client else None,
    ))
    audit_logger.log(
        action,
        user_id=user_context["user_id"],
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
    )


# ============= SCHEMAS =============

class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    timestamp: Optional[datetime]
    user_id: Optional[str]
    action: str
    entity_type: Optional[str]
    entity_id: Optional[int]
    details: Optional[dict]
    ip_address: Optional[str]


# ============= ROUTES =============

@router.get("/logs", response_model=List[AuditLogResponse])
async def list_audit_logs(
    action: Optional[str] = Query(None, description="Filter by action type"),
    entity_type: Optional[str] = Query(None, description="Filter by entity type"),
    entity_id: Optional[int] = Query(None, description="Filter by entity id"),
    user_id: Optional[str] = Query(None, description="Filter by user"),
    limit: int = Query(100, le=500),
    offset: int = Query(0),
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """List audit logs (admin only)."""
    query = db.query(AuditLog)

    if action:
        query = query.filter(AuditLog.action == action)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)

    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)

    if user_id:
        query = query.filter(AuditLog.user_id == user_id)

    logs = query.order_by(desc(AuditLog.id)).offset(offset).limit(limit).all()
    return [AuditLogResponse.model_validate(log) for log in logs]
