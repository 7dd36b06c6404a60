"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
from contextlib import contextmanager

from landedcost.core.config import settings
from landedcost.core.logging import get_logger

logger = get_logger(__name__)


def _build_engine(url: str):
    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
    )


engine = _build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Initialize database connection and verify the schema.
    
    Schema is managed by Alembic migrations, NOT create_all().
    Run `alembic upgrade head` before first startup. With DEBUG=true
    missing tables are created automatically for local development.
    """
    from landedcost.db import models  # noqa

    if not settings.DATABASE_URL.startswith("sqlite"):
        from landedcost.db.preflight import run_db_preflight
        run_db_preflight()

    existing_tables = inspect(engine).get_table_names()
    required_tables = ["reports", "report_tasks", "sourcing_jobs"]
    missing = [t for t in required_tables if t not in existing_tables]

    if not missing:
        logger.info(f"Database schema verified: {len(existing_tables)} tables found")
        return

    logger.warning(f"Missing required tables: {missing}. Run `alembic upgrade head`.")
    if settings.DEBUG:
        logger.warning("DEBUG=true: Auto-creating tables (NOT for production!)")
        Base.metadata.create_all(bind=engine)
