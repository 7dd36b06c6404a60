"""
SQLAlchemy ORM models for the landed-cost service.

JSON columns hold payloads produced by the pydantic models in
``landedcost.services.schemas``. Always reassign a JSON column with a new
value; in-place mutation is not tracked.
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Float,
    ForeignKey, Enum, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from landedcost.db.session import Base


# ============= ENUMS =============

class ReportStatus(str, enum.Enum):
    PARTIAL = "partial"
    COMPLETE = "complete"
    FAILED = "failed"


class LabelExtractionStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    NOT_PROVIDED = "not_provided"
    MANUAL = "manual"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    OUTREACH_SENT = "outreach_sent"
    REPLIES_RECEIVED = "replies_received"
    QUOTES_CONFIRMED = "quotes_confirmed"
    CLOSED = "closed"


# Forward-only ordering for the job-level rollup
JOB_STATUS_ORDER = [
    JobStatus.PENDING,
    JobStatus.OUTREACH_SENT,
    JobStatus.REPLIES_RECEIVED,
    JobStatus.QUOTES_CONFIRMED,
    JobStatus.CLOSED,
]


class SupplierStatus(str, enum.Enum):
    PENDING = "pending"
    OUTREACH_SENT = "outreach_sent"
    REPLIED = "replied"
    NO_REPLY = "no_reply"
    QUOTE_RECEIVED = "quote_received"
    CONFIRMED = "confirmed"


class QuoteValidationStatus(str, enum.Enum):
    PENDING = "pending"
    VALID = "valid"
    NEEDS_REVIEW = "needs_review"
    REJECTED = "rejected"


def enum_values(enum_cls):
    return [e.value for e in enum_cls]


ReportStatusType = Enum(*enum_values(ReportStatus), name='reportstatus')
LabelExtractionStatusType = Enum(*enum_values(LabelExtractionStatus), name='labelextractionstatus')
TaskStatusType = Enum(*enum_values(TaskStatus), name='taskstatus')
JobStatusType = Enum(*enum_values(JobStatus), name='sourcingjobstatus')
SupplierStatusType = Enum(*enum_values(SupplierStatus), name='jobsupplierstatus')
QuoteValidationStatusType = Enum(*enum_values(QuoteValidationStatus), name='quotevalidationstatus')


# ============= REPORTS =============

class Report(Base):
    """A landed-cost estimate. Unique per cache key."""
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    input_key = Column(String(64), unique=True, nullable=False)
    owner_id = Column(String(64), nullable=False, index=True)
    status = Column(ReportStatusType, nullable=False, default=ReportStatus.PARTIAL.value)
    schema_version = Column(Integer, nullable=False, default=2)
    revision = Column(Integer, nullable=False, default=1)  # bumped on every write

    request_params = Column(JSON)  # quantity, duty_rate, shipping_cost, fee, destination, shipping_mode
    upload_audit = Column(JSON)  # per-step extraction status and failure reasons
    fast_facts = Column(JSON)
    pipeline_result = Column(JSON)  # raw extraction payloads
    category_key = Column(String(50), index=True)
    classification_candidates = Column(JSON)
    baseline = Column(JSON)
    evidence = Column(JSON)  # list of tagged evidence records
    signals = Column(JSON)
    evidence_items = Column(JSON)  # import-record hits from evidence upgrades
    verification = Column(JSON)

    label_extraction_status = Column(LabelExtractionStatusType, default=LabelExtractionStatus.NOT_PROVIDED.value)
    label_confirmed_fields = Column(JSON)

    error_code = Column(String(100))
    error_step = Column(String(100))
    evidence_last_attempt_at = Column(DateTime(timezone=True))
    evidence_last_success_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    tasks = relationship("ReportTask", back_populates="report")
    sourcing_jobs = relationship("SourcingJob", back_populates="report")


class ReportTask(Base):
    """Outbox row for background work on a report. Written with the report."""
    __tablename__ = "report_tasks"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("reports.id"), nullable=False, index=True)
    kind = Column(String(50), nullable=False, default="upgrade")
    status = Column(TaskStatusType, nullable=False, default=TaskStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    dispatched_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    report = relationship("Report", back_populates="tasks")

    __table_args__ = (
        Index('ix_report_tasks_status_dispatched', 'status', 'dispatched_at'),
    )


# ============= SOURCING =============

class SourcingJob(Base):
    """Supplier outreach workflow spawned from a complete report."""
    __tablename__ = "sourcing_jobs"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("reports.id"), nullable=False, index=True)
    owner_id = Column(String(64), nullable=False)
    status = Column(JobStatusType, nullable=False, default=JobStatus.PENDING.value)
    supplier_ids = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    closed_at = Column(DateTime(timezone=True))

    # Relationships
    report = relationship("Report", back_populates="sourcing_jobs")
    suppliers = relationship("JobSupplier", back_populates="job", order_by="JobSupplier.id")


class JobSupplier(Base):
    """One supplier's participation in a sourcing job."""
    __tablename__ = "sourcing_job_suppliers"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("sourcing_jobs.id"), nullable=False, index=True)
    supplier_id = Column(String(100), nullable=False)
    supplier_name = Column(String(255))
    status = Column(SupplierStatusType, nullable=False, default=SupplierStatus.PENDING.value)
    outreach_pack = Column(JSON)
    dispatch_error = Column(Text)
    dispatched_at = Column(DateTime(timezone=True))
    replied_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    job = relationship("SourcingJob", back_populates="suppliers")
    quote = relationship("SupplierQuote", back_populates="job_supplier", uselist=False)

    __table_args__ = (
        UniqueConstraint('job_id', 'supplier_id', name='uq_job_supplier'),
    )


class SupplierQuote(Base):
    """The single active quote for a job supplier. New quotes overwrite it."""
    __tablename__ = "supplier_quotes"

    id = Column(Integer, primary_key=True, index=True)
    job_supplier_id = Column(Integer, ForeignKey("sourcing_job_suppliers.id"), unique=True, nullable=False)
    price_per_unit = Column(Float)
    currency = Column(String(10), default="USD")
    moq = Column(Integer)  # Minimum Order Quantity
    lead_time_days = Column(Integer)
    incoterm = Column(String(20))  # FOB, CIF, EXW, DDP, DDU
    payment_terms = Column(String(100))
    confirmed_in_writing = Column(Boolean, nullable=False, default=False)
    validation_status = Column(QuoteValidationStatusType, nullable=False, default=QuoteValidationStatus.PENDING.value)
    missing_fields = Column(JSON)
    notes = Column(Text)
    raw_reply = Column(Text)
    revision = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    job_supplier = relationship("JobSupplier", back_populates="quote")


# ============= AUDIT =============

class AuditLog(Base):
    """Audit trail for state-changing API actions."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    user_id = Column(String(64), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), index=True)
    entity_id = Column(Integer)
    details = Column(JSON)
    ip_address = Column(String(50))
