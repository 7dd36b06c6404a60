"""
Database preflight: wait for Postgres before the API or worker starts.
"""
import sys
import time

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from landedcost.core.config import settings
from landedcost.core.logging import get_logger

logger = get_logger("db_preflight")


def _host_part(url: str) -> str:
    # Never log credentials
    return url.split("@")[-1] if "@" in url else "configured URL"


def run_db_preflight(retries: int = 5, delay: int = 2) -> bool:
    """
    Run ``SELECT 1`` until it succeeds or ``retries`` is spent.

    Exits the process on an authentication failure (retrying will not help)
    or once every attempt has failed.
    """
    db_url = settings.DATABASE_URL
    if not db_url:
        logger.error("DATABASE_URL is not configured")
        sys.exit(1)

    logger.info(f"DB preflight against {_host_part(db_url)}")
    engine = create_engine(db_url, connect_args={"connect_timeout": 5})
    try:
        for attempt in range(1, retries + 1):
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                logger.info("DB preflight passed")
                return True
            except OperationalError as e:
                if "password authentication failed" in str(e).lower():
                    logger.error(
                        f"DB authentication failed for {settings.POSTGRES_USER}@{settings.POSTGRES_DB}; "
                        "check POSTGRES_* settings against the database volume"
                    )
                    sys.exit(1)
                if attempt == retries:
                    logger.error(f"DB unreachable after {retries} attempts: {e}")
                    sys.exit(1)
                logger.warning(f"DB preflight attempt {attempt}/{retries} failed; retrying in {delay}s")
                time.sleep(delay)
    finally:
        engine.dispose()
    return False


if __name__ == "__main__":
    run_db_preflight()
