"""
Tests for evidence upgrades and manual label corrections.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from landedcost.core.errors import CooldownError, ValidationError, VerificationActiveError
from landedcost.db.models import ReportStatus
from landedcost.db.stores import ReportStore
from landedcost.services.estimates import apply_manual_label, run_evidence_upgrade
from landedcost.services.schemas import QuoteInput
from landedcost.services.sourcing import close_job, create_job, record_quote
from landedcost.services.vision import MockVisionProvider

NOW = datetime(2024, 10, 2, 12, 0, tzinfo=timezone.utc)


def _upgrade(db, report, now=NOW):
    return asyncio.run(run_evidence_upgrade(db, report, provider=MockVisionProvider(), now=now))


class TestEvidenceUpgrade:
    """Import evidence lookup with its guards."""

    def test_success_sets_signal_and_items(self, db_session, complete_report):
        report = _upgrade(db_session, complete_report)

        assert report.signals["has_import_evidence"] is True
        assert len(report.evidence_items) == 2
        assert report.evidence_last_success_at is not None

    def test_second_call_inside_window_rejected(self, db_session, complete_report):
        report = _upgrade(db_session, complete_report)
        with pytest.raises(CooldownError) as exc_info:
            _upgrade(db_session, report, now=NOW + timedelta(hours=2))
        assert exc_info.value.retry_after_seconds == 22 * 3600

    def test_allowed_again_after_window(self, db_session, complete_report):
        report = _upgrade(db_session, complete_report)
        report = _upgrade(db_session, report, now=NOW + timedelta(hours=25))
        assert len(report.evidence_items) == 2

    def test_open_job_checked_before_cooldown(self, db_session, complete_report):
        report = _upgrade(db_session, complete_report)
        create_job(db_session, report.id, report.owner_id, ["sup-a"])

        # Both guards apply here; the active job wins
        with pytest.raises(VerificationActiveError):
            _upgrade(db_session, ReportStore(db_session).get(report.id), now=NOW + timedelta(hours=1))

    def test_verified_report_rejected_after_job_closed(self, db_session, complete_report):
        job = create_job(db_session, complete_report.id, complete_report.owner_id, ["sup-a"])
        supplier_id = job.suppliers[0].id
        record_quote(db_session, supplier_id, QuoteInput(price_per_unit=1.2, moq=500, lead_time_days=30,
                                                         confirmed_in_writing=True))
        close_job(db_session, job.id, owner_id=complete_report.owner_id)

        report = ReportStore(db_session).get(complete_report.id)
        with pytest.raises(VerificationActiveError):
            _upgrade(db_session, report)
        assert ReportStore(db_session).get(report.id).evidence_last_attempt_at is None

    def test_no_records_keeps_signal_off(self, db_session, submit):
        report = submit(product="https://img.test/ceramic_mug.jpg", quantity=100).report
        report = _upgrade(db_session, report)

        assert (report.signals or {}).get("has_import_evidence", False) is False
        assert report.evidence_last_attempt_at is not None
        assert report.evidence_last_success_at is None


class TestManualLabel:
    """User-entered label fields."""

    def test_partial_report_stores_fields_only(self, db_session, submit):
        report = submit(quantity=100).report
        updated = apply_manual_label(db_session, report, {"units_per_case": 12, "origin_country": None})

        assert updated.status == ReportStatus.PARTIAL.value
        assert updated.label_confirmed_fields["units_per_case"] == 12
        assert "origin_country" not in updated.label_confirmed_fields
        assert "confirmed_at" in updated.label_confirmed_fields
        assert updated.baseline is None

    def test_complete_report_recomputed(self, db_session, complete_report):
        revision = complete_report.revision
        updated = apply_manual_label(db_session, complete_report, {"net_weight_grams": 500})

        assert updated.revision == revision + 1
        assert updated.baseline["assumptions"]["weight_kg"] == pytest.approx(0.5)
        weight = next(r for r in updated.evidence if r["kind"] == "weight")
        assert weight["provenance"] == "MANUAL_ENTRY"
        assert weight["confirmed"] is True

    def test_fields_accumulate(self, db_session, complete_report):
        apply_manual_label(db_session, complete_report, {"net_weight_grams": 500})
        updated = apply_manual_label(db_session, complete_report, {"units_per_case": 6})
        assert updated.label_confirmed_fields["net_weight_grams"] == 500
        assert updated.label_confirmed_fields["units_per_case"] == 6

    def test_failed_report_rejected(self, db_session, submit):
        report = submit(product="https://img.test/unreadable.jpg", label=None).report
        with pytest.raises(ValidationError):
            apply_manual_label(db_session, report, {"net_weight_grams": 500})
