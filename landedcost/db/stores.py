"""
Persistence boundary for reports, outbox tasks and sourcing jobs.

Stores wrap a SQLAlchemy session and expose the only write primitives the
pipeline relies on: insert-if-absent on the cache key and compare-and-swap
on status columns.
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from landedcost.core.errors import ConflictError
from landedcost.core.logging import get_logger
from landedcost.db.models import (
    JobStatus,
    JobSupplier,
    Report,
    ReportStatus,
    ReportTask,
    SourcingJob,
    SupplierQuote,
    SupplierStatus,
    TaskStatus,
)

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReportStore:
    """Report persistence with a unique cache key."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, report_id: int) -> Optional[Report]:
        return self.db.query(Report).filter(Report.id == report_id).first()

    def get_by_key(self, input_key: str) -> Optional[Report]:
        return self.db.query(Report).filter(Report.input_key == input_key).first()

    def _insert(self, report: Report) -> Report:
        self.db.add(report)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(f"input_key {report.input_key} already exists") from e
        self.db.refresh(report)
        return report

    def create_if_absent(self, input_key: str, **fields) -> Tuple[Report, bool]:
        """
        Return the report for ``input_key``, creating it as partial if absent.

        A concurrent insert of the same key surfaces as ConflictError; the
        winner's row is re-read once. A second conflict propagates.

        Returns:
            Tuple of (report, created)
        """
        for attempt in range(2):
            existing = self.get_by_key(input_key)
            if existing is not None:
                return existing, False
            try:
                report = self._insert(Report(
                    input_key=input_key,
                    status=ReportStatus.PARTIAL.value,
                    **fields,
                ))
                return report, True
            except ConflictError:
                if attempt:
                    raise
                logger.info(f"[key:{input_key[:12]}] lost create race; re-reading winner")
        raise ConflictError(f"input_key {input_key} unresolved")

    def is_orphaned(self, report: Report, stale_seconds: int, now: Optional[datetime] = None) -> bool:
        """A partial report whose fast path never finished (no fast facts, so no task)."""
        if report.status != ReportStatus.PARTIAL.value or report.fast_facts is not None:
            return False
        created = report.created_at
        if created is None:
            return True
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return created <= (now or utcnow()) - timedelta(seconds=stale_seconds)

    def orphaned_partials(self, stale_seconds: int, now: Optional[datetime] = None) -> List[Report]:
        stale_before = (now or utcnow()) - timedelta(seconds=stale_seconds)
        return (
            self.db.query(Report)
            .filter(
                Report.status == ReportStatus.PARTIAL.value,
                Report.fast_facts.is_(None),
                Report.created_at <= stale_before,
            )
            .order_by(Report.id)
            .all()
        )

    def compare_and_swap_status(
        self,
        report_id: int,
        from_status: ReportStatus,
        to_status: ReportStatus,
        expected_revision: Optional[int] = None,
        **fields,
    ) -> bool:
        """
        Atomically move ``from_status`` -> ``to_status`` and write ``fields``.

        Returns False without writing when the row is not in ``from_status``,
        or when ``expected_revision`` is given and the row has moved past it.
        """
        query = self.db.query(Report).filter(Report.id == report_id, Report.status == from_status.value)
        if expected_revision is not None:
            query = query.filter(Report.revision == expected_revision)
        values = {
            "status": to_status.value,
            "updated_at": utcnow(),
            "revision": Report.revision + 1,
            **fields,
        }
        updated = query.update(values, synchronize_session=False)
        self.db.commit()
        # Bulk update bypasses the identity map
        self.db.expire_all()
        return updated == 1

    def update(self, report: Report, **fields) -> Report:
        for key, value in fields.items():
            setattr(report, key, value)
        report.revision = (report.revision or 1) + 1
        self.db.commit()
        self.db.refresh(report)
        return report

    def count_similar_complete(self, category_key: str, exclude_id: int) -> int:
        return (
            self.db.query(Report)
            .filter(
                Report.category_key == category_key,
                Report.status == ReportStatus.COMPLETE.value,
                Report.id != exclude_id,
            )
            .count()
        )


class OutboxStore:
    """Outbox of background tasks attached to reports."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, report_id: int, kind: str = "upgrade") -> ReportTask:
        """Stage a pending task; committed by the caller with its report write."""
        task = ReportTask(report_id=report_id, kind=kind, status=TaskStatus.PENDING.value, attempts=0)
        self.db.add(task)
        return task

    def get(self, task_id: int) -> Optional[ReportTask]:
        return self.db.query(ReportTask).filter(ReportTask.id == task_id).first()

    def mark_dispatched(self, task_id: int) -> bool:
        updated = (
            self.db.query(ReportTask)
            .filter(ReportTask.id == task_id, ReportTask.status == TaskStatus.PENDING.value)
            .update({"status": TaskStatus.DISPATCHED.value, "dispatched_at": utcnow()},
                    synchronize_session=False)
        )
        self.db.commit()
        return updated == 1

    def claim(self, task_id: int) -> Optional[ReportTask]:
        """Move a pending or dispatched task to running. None if someone else has it."""
        task = self.get(task_id)
        if task is None:
            return None
        updated = (
            self.db.query(ReportTask)
            .filter(
                ReportTask.id == task_id,
                ReportTask.status.in_([TaskStatus.PENDING.value, TaskStatus.DISPATCHED.value]),
                ReportTask.attempts == task.attempts,
            )
            .update({
                "status": TaskStatus.RUNNING.value,
                "attempts": task.attempts + 1,
                "dispatched_at": utcnow(),
            }, synchronize_session=False)
        )
        self.db.commit()
        self.db.expire_all()
        return self.get(task_id) if updated == 1 else None

    def ack(self, task_id: int, note: Optional[str] = None):
        self.db.query(ReportTask).filter(ReportTask.id == task_id).update({
            "status": TaskStatus.DONE.value,
            "completed_at": utcnow(),
            "last_error": note,
        }, synchronize_session=False)
        self.db.commit()

    def release(self, task_id: int, error: str, max_attempts: int) -> ReportTask:
        """Return a failed task to pending, or fail it once attempts are exhausted."""
        task = self.get(task_id)
        exhausted = task.attempts >= max_attempts
        task.status = TaskStatus.FAILED.value if exhausted else TaskStatus.PENDING.value
        task.last_error = error[:2000]
        if exhausted:
            task.completed_at = utcnow()
        self.db.commit()
        self.db.refresh(task)
        return task

    def due_for_dispatch(self, visibility_timeout_seconds: int, now: Optional[datetime] = None) -> List[ReportTask]:
        """Pending tasks plus dispatched/running tasks whose worker went quiet."""
        now = now or utcnow()
        stale_before = now - timedelta(seconds=visibility_timeout_seconds)
        return (
            self.db.query(ReportTask)
            .filter(or_(
                ReportTask.status == TaskStatus.PENDING.value,
                (ReportTask.status.in_([TaskStatus.DISPATCHED.value, TaskStatus.RUNNING.value]))
                & (ReportTask.dispatched_at < stale_before),
            ))
            .order_by(ReportTask.id)
            .all()
        )

    def reset_to_pending(self, task_id: int):
        self.db.query(ReportTask).filter(ReportTask.id == task_id).update(
            {"status": TaskStatus.PENDING.value}, synchronize_session=False
        )
        self.db.commit()


class JobStore:
    """Sourcing jobs, their suppliers and quotes."""

    def __init__(self, db: Session):
        self.db = db

    def get_job(self, job_id: int) -> Optional[SourcingJob]:
        return self.db.query(SourcingJob).filter(SourcingJob.id == job_id).first()

    def get_supplier(self, job_supplier_id: int) -> Optional[JobSupplier]:
        return self.db.query(JobSupplier).filter(JobSupplier.id == job_supplier_id).first()

    def jobs_for_report(self, report_id: int, include_closed: bool = True) -> List[SourcingJob]:
        query = self.db.query(SourcingJob).filter(SourcingJob.report_id == report_id)
        if not include_closed:
            query = query.filter(SourcingJob.status != JobStatus.CLOSED.value)
        return query.order_by(SourcingJob.id).all()

    def has_open_job(self, report_id: int) -> bool:
        return bool(self.jobs_for_report(report_id, include_closed=False))

    def create_job(self, report_id: int, owner_id: str, supplier_ids: List[str]) -> SourcingJob:
        job = SourcingJob(
            report_id=report_id,
            owner_id=owner_id,
            status=JobStatus.PENDING.value,
            supplier_ids=supplier_ids,
        )
        self.db.add(job)
        self.db.flush()
        return job

    def add_supplier(self, job: SourcingJob, supplier_id: str, supplier_name: Optional[str]) -> JobSupplier:
        supplier = JobSupplier(
            job_id=job.id,
            supplier_id=supplier_id,
            supplier_name=supplier_name,
            status=SupplierStatus.PENDING.value,
        )
        self.db.add(supplier)
        self.db.flush()
        return supplier

    def compare_and_swap_job_status(self, job_id: int, from_status: JobStatus, to_status: JobStatus, **fields) -> bool:
        updated = (
            self.db.query(SourcingJob)
            .filter(SourcingJob.id == job_id, SourcingJob.status == from_status.value)
            .update({"status": to_status.value, "updated_at": utcnow(), **fields},
                    synchronize_session=False)
        )
        self.db.commit()
        self.db.expire_all()
        return updated == 1

    def upsert_quote(self, supplier: JobSupplier, **fields) -> SupplierQuote:
        """Write the supplier's single active quote, superseding any prior one."""
        quote = supplier.quote
        if quote is None:
            quote = SupplierQuote(job_supplier_id=supplier.id, revision=1, **fields)
            self.db.add(quote)
        else:
            for key, value in fields.items():
                setattr(quote, key, value)
            quote.revision = (quote.revision or 1) + 1
        return quote
