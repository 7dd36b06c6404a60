"""
Background worker using RQ (Redis Queue).
"""
from redis import Redis
from rq import Queue, Worker

from landedcost.core.config import settings
from landedcost.core.logging import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)


def run_worker():
    """Start the RQ worker with its scheduler and kick off the outbox drain."""
    from landedcost.workers.jobs import setup_scheduled_jobs

    redis_conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker(
        queues=[
            Queue("high", connection=redis_conn),
            Queue("default", connection=redis_conn),
            Queue("low", connection=redis_conn),
        ],
        connection=redis_conn,
        name="landedcost-worker",
    )
    setup_scheduled_jobs()
    logger.info("Starting landed-cost worker...")
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    run_worker()
