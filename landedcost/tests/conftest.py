"""
Shared fixtures: in-memory SQLite, eager task execution and bearer tokens.

Environment is set before any ``landedcost`` import so ``settings`` and the
engine pick it up.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key-0123456789abcdef0123456789abcdef"
os.environ["TASKS_EAGER"] = "true"
os.environ["VISION_PROVIDER"] = "mock"
os.environ["LLM_PROVIDER"] = "mock"
os.environ.pop("OUTREACH_WEBHOOK_URL", None)

import pytest
from fastapi.testclient import TestClient

from landedcost.db.session import Base, SessionLocal, engine
from landedcost.db import models  # noqa: F401
from landedcost.core.security import create_access_token

OWNER_ID = "user-1"


@pytest.fixture
def db_session():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    from landedcost.main import app
    return TestClient(app)


def _auth(sub: str, role: str) -> dict:
    token = create_access_token({"sub": sub, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def operator_headers():
    return _auth(OWNER_ID, "operator")


@pytest.fixture
def viewer_headers():
    return _auth(OWNER_ID, "viewer")


@pytest.fixture
def admin_headers():
    return _auth("admin-1", "admin")


@pytest.fixture
def other_user_headers():
    return _auth("user-2", "operator")


PRODUCT_URL = "https://img.test/plush_toy_bear.jpg"
LABEL_URL = "https://img.test/label.jpg"
BARCODE_URL = "https://img.test/barcode.jpg"


@pytest.fixture
def submit(db_session):
    """Run the fast path synchronously; returns the EstimateSubmission."""
    import asyncio

    from landedcost.services.estimates import submit_estimate
    from landedcost.services.schemas import EstimateParams, ImageRef, InputImages
    from landedcost.services.vision import MockVisionProvider

    def _submit(product=PRODUCT_URL, label=LABEL_URL, barcode=None, owner_id=OWNER_ID, **params):
        images = InputImages(
            product=ImageRef(url=product),
            label=ImageRef(url=label) if label else None,
            barcode=ImageRef(url=barcode) if barcode else None,
        )
        return asyncio.run(submit_estimate(
            db_session, images, EstimateParams(**params), owner_id, provider=MockVisionProvider()
        ))

    return _submit


@pytest.fixture
def complete_report(db_session, submit):
    """A report taken through the fast path and the background upgrade."""
    from landedcost.db.stores import ReportStore
    from landedcost.workers.jobs import dispatch_report_task

    submission = submit(quantity=100, duty_rate=0.05, shipping_cost=20, fee=2)
    dispatch_report_task(submission.task_id)
    db_session.expire_all()
    report = ReportStore(db_session).get(submission.report.id)
    assert report.status == "complete"
    return report
