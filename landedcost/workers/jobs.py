"""
Background job definitions.

Report upgrades are driven by the ``report_tasks`` outbox: a task row is
committed with its partial report, dispatched to RQ after the response, and
re-dispatched by ``drain_outbox_job`` if it is never acknowledged.
"""
from datetime import datetime, timedelta
from typing import Optional

import requests
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue
from sqlalchemy.orm import Session

from landedcost.core.config import settings
from landedcost.core.logging import get_logger
from landedcost.db.models import ReportStatus, TaskStatus
from landedcost.db.session import get_db_context
from landedcost.db.stores import JobStore, OutboxStore, ReportStore, utcnow
from landedcost.services.fast_extract import FAST_FACTS_FAILED, FAST_FACTS_STEP

logger = get_logger(__name__)

UPGRADE_EXHAUSTED = "UPGRADE_EXHAUSTED"
EXHAUSTED_STEP = "background_upgrade"


def get_queue(name: str = "default") -> Queue:
    """Get RQ queue."""
    redis_conn = Redis.from_url(settings.REDIS_URL)
    return Queue(name, connection=redis_conn)


# ============= JOB FUNCTIONS =============

def _exhaust(db: Session, report_id: int, error: str):
    swapped = ReportStore(db).compare_and_swap_status(
        report_id,
        ReportStatus.PARTIAL,
        ReportStatus.FAILED,
        error_code=UPGRADE_EXHAUSTED,
        error_step=EXHAUSTED_STEP,
    )
    if swapped:
        logger.error(f"[report:{report_id}] upgrade attempts exhausted: {error}")


def run_report_task(task_id: int):
    """Claim an outbox task, run the upgrade and acknowledge it."""
    from landedcost.services.upgrader import upgrade_report

    with get_db_context() as db:
        outbox = OutboxStore(db)
        task = outbox.claim(task_id)
        if task is None:
            logger.info(f"[task:{task_id}] already claimed or finished")
            return None

        report_id = task.report_id
        logger.info(f"[task:{task_id}] attempt {task.attempts} for report {report_id}")
        try:
            outcome = upgrade_report(db, report_id)
        except Exception as e:
            db.rollback()
            released = outbox.release(task_id, f"{type(e).__name__}: {e}", settings.TASK_MAX_ATTEMPTS)
            logger.error(f"[task:{task_id}] upgrade raised, task now {released.status}: {e}")
            if released.status == TaskStatus.FAILED.value:
                _exhaust(db, report_id, str(e))
            return None

        outbox.ack(task_id, note=f"{outcome.result}: {outcome.detail}" if outcome.detail else outcome.result)
        return outcome.result


def drain_report_tasks(db: Session, now: Optional[datetime] = None) -> int:
    """
    Re-dispatch outbox tasks that were never picked up.

    Pending tasks are dispatched; dispatched or running tasks older than the
    visibility timeout are treated as lost and reset first. Partial reports
    left without fast facts are failed so a resubmit can retry them.

    Returns:
        Number of tasks dispatched
    """
    outbox = OutboxStore(db)
    due = outbox.due_for_dispatch(settings.TASK_VISIBILITY_TIMEOUT_SECONDS, now=now)
    dispatched = 0
    for task in due:
        if task.status != TaskStatus.PENDING.value:
            if task.attempts >= settings.TASK_MAX_ATTEMPTS:
                outbox.release(task.id, "visibility timeout after final attempt", settings.TASK_MAX_ATTEMPTS)
                _exhaust(db, task.report_id, "visibility timeout")
                continue
            logger.warning(f"[task:{task.id}] {task.status} past visibility timeout; re-dispatching")
            outbox.reset_to_pending(task.id)
        dispatch_report_task(task.id)
        dispatched += 1
    if dispatched:
        logger.info(f"Outbox drain dispatched {dispatched} tasks")
    _fail_orphaned_reports(db, now)
    return dispatched


def _fail_orphaned_reports(db: Session, now: Optional[datetime] = None):
    """Fail partial reports whose fast path died before staging a task."""
    store = ReportStore(db)
    for report in store.orphaned_partials(settings.FAST_PATH_STALE_SECONDS, now=now):
        swapped = store.compare_and_swap_status(
            report.id,
            ReportStatus.PARTIAL,
            ReportStatus.FAILED,
            expected_revision=report.revision,
            error_code=FAST_FACTS_FAILED,
            error_step=FAST_FACTS_STEP,
        )
        if swapped:
            logger.error(f"[report:{report.id}] fast path never finished; marked failed")


def drain_outbox_job():
    """Periodic outbox drain; schedules its own next run."""
    try:
        with get_db_context() as db:
            drain_report_tasks(db)
    finally:
        get_queue("low").enqueue_in(
            timedelta(seconds=settings.OUTBOX_DRAIN_INTERVAL_SECONDS), drain_outbox_job
        )


def dispatch_outreach_job(job_supplier_id: int):
    """Hand a supplier's outreach pack to the messaging collaborator."""
    with get_db_context() as db:
        supplier = JobStore(db).get_supplier(job_supplier_id)
        if supplier is None or not supplier.outreach_pack:
            logger.warning(f"Job supplier {job_supplier_id} not found or has no outreach pack")
            return

        if not settings.OUTREACH_WEBHOOK_URL:
            logger.info(f"[job:{supplier.job_id}] outreach for {supplier.supplier_id} logged (no webhook configured)")
            supplier.dispatched_at = utcnow()
            return

        try:
            response = requests.post(
                settings.OUTREACH_WEBHOOK_URL,
                json={
                    "job_id": supplier.job_id,
                    "job_supplier_id": supplier.id,
                    "supplier_id": supplier.supplier_id,
                    "pack": supplier.outreach_pack,
                },
                timeout=10,
            )
            response.raise_for_status()
            supplier.dispatched_at = utcnow()
            supplier.dispatch_error = None
            logger.info(f"[job:{supplier.job_id}] outreach dispatched to {supplier.supplier_id}")
        except requests.RequestException as e:
            supplier.dispatch_error = str(e)[:2000]
            logger.error(f"[job:{supplier.job_id}] outreach dispatch to {supplier.supplier_id} failed: {e}")


# ============= QUEUE HELPERS =============

def dispatch_report_task(task_id: int):
    """Send an outbox task to the worker, or run it inline when TASKS_EAGER."""
    if settings.TASKS_EAGER:
        return run_report_task(task_id)

    with get_db_context() as db:
        outbox = OutboxStore(db)
        if not outbox.mark_dispatched(task_id):
            logger.info(f"[task:{task_id}] not pending; dispatch skipped")
            return None
        try:
            return get_queue("default").enqueue(run_report_task, task_id)
        except RedisError as e:
            # Left for the next outbox drain
            outbox.reset_to_pending(task_id)
            logger.error(f"[task:{task_id}] enqueue failed: {e}")
            return None


def enqueue_outreach_dispatch(job_supplier_id: int):
    """Queue outreach dispatch for one supplier."""
    if settings.TASKS_EAGER:
        return dispatch_outreach_job(job_supplier_id)
    queue = get_queue("high")
    return queue.enqueue(dispatch_outreach_job, job_supplier_id)


def setup_scheduled_jobs():
    """Start the self-rescheduling outbox drain."""
    queue = get_queue("low")
    queue.enqueue(drain_outbox_job)
    logger.info("Scheduled jobs configured")
