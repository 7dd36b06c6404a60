"""
Tests for the estimate pipeline: fast path, background upgrade and the outbox.
"""
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from landedcost.core.errors import ConflictError
from landedcost.db.models import Report, ReportStatus, ReportTask, TaskStatus
from landedcost.db.stores import OutboxStore, ReportStore, utcnow
from landedcost.services.vision import MockVisionProvider
from landedcost.workers.jobs import dispatch_report_task, drain_report_tasks, run_report_task


class TestFastPath:
    """Cache lookup, partial report and outbox task in one write."""

    def test_identical_request_returns_same_report(self, db_session, submit):
        first = submit(quantity=100, duty_rate=0.05, shipping_cost=20, fee=2, destination="US")
        second = submit(quantity=100.0, duty_rate=0.05, shipping_cost=20.0, fee=2.0, destination="us")

        assert second.report.id == first.report.id
        assert second.cached is True
        assert first.cached is False
        assert db_session.query(Report).count() == 1
        assert db_session.query(ReportTask).count() == 1

    def test_different_requester_gets_own_report(self, db_session, submit):
        first = submit(quantity=100)
        other = submit(quantity=100, owner_id="user-2")
        assert other.report.id != first.report.id

    def test_partial_report_with_pending_task(self, db_session, submit):
        submission = submit(quantity=100)
        report = submission.report

        assert report.status == ReportStatus.PARTIAL.value
        assert report.fast_facts["product_name"] == "Plush Toy Bear"
        assert report.label_extraction_status == "success"
        assert report.pipeline_result["images"]["product"]["url"].endswith("plush_toy_bear.jpg")
        task = OutboxStore(db_session).get(submission.task_id)
        assert task.report_id == report.id
        assert task.status == TaskStatus.PENDING.value

    def test_all_steps_failing_marks_report_failed(self, db_session, submit):
        submission = submit(product="https://img.test/unreadable.jpg", label=None)
        report = submission.report

        assert report.status == ReportStatus.FAILED.value
        assert report.error_code == "FAST_FACTS_FAILED"
        assert report.error_step == "fast_facts_extraction"
        assert submission.task_id is None
        assert db_session.query(ReportTask).count() == 0

    def test_failed_report_is_retried_in_place(self, db_session, submit):
        first = submit(product="https://img.test/unreadable.jpg", label=None)
        again = submit(product="https://img.test/unreadable.jpg", label=None)
        assert again.report.id == first.report.id
        assert again.cached is False
        assert db_session.query(Report).count() == 1

    def test_unexpected_extraction_error_fails_report(self, db_session, submit):
        with patch("landedcost.services.estimates.extract_fast_facts",
                   AsyncMock(side_effect=RuntimeError("provider exploded"))):
            submission = submit(quantity=100)

        report = submission.report
        assert report.status == ReportStatus.FAILED.value
        assert report.error_code == "FAST_FACTS_FAILED"
        assert report.error_step == "fast_facts_extraction"

        again = submit(quantity=100)
        assert again.report.id == report.id
        assert again.cached is False
        assert again.report.fast_facts is not None
        assert again.task_id is not None


class TestInterruptedFastPath:
    """A partial row left behind when the fast path dies mid-request."""

    @staticmethod
    def _leave_orphan(db_session, submit, age=timedelta(minutes=5)):
        with patch("landedcost.services.estimates.run_fast_path", AsyncMock(return_value=None)):
            submit(quantity=100)
        report = db_session.query(Report).one()
        report.created_at = utcnow() - age
        db_session.commit()
        return report

    def test_resubmit_retries_orphaned_report(self, db_session, submit):
        orphan = self._leave_orphan(db_session, submit)

        again = submit(quantity=100)
        assert again.report.id == orphan.id
        assert again.cached is False
        assert again.report.fast_facts["product_name"] == "Plush Toy Bear"
        assert db_session.query(ReportTask).count() == 1

    def test_recent_partial_is_a_cache_hit(self, db_session, submit):
        self._leave_orphan(db_session, submit, age=timedelta(seconds=0))
        again = submit(quantity=100)
        assert again.cached is True

    def test_drain_fails_orphaned_report(self, db_session, submit):
        orphan = self._leave_orphan(db_session, submit)

        assert drain_report_tasks(db_session) == 0
        report = ReportStore(db_session).get(orphan.id)
        assert report.status == ReportStatus.FAILED.value
        assert report.error_code == "FAST_FACTS_FAILED"

        again = submit(quantity=100)
        assert again.report.id == orphan.id
        assert again.report.status == ReportStatus.PARTIAL.value
        assert again.task_id is not None


class TestReportStore:
    """Insert-if-absent and compare-and-swap."""

    def test_create_race_resolved_by_reread(self, db_session):
        store = ReportStore(db_session)
        winner, created = store.create_if_absent("k" * 64, owner_id="user-1")
        assert created

        real_get = store.get_by_key
        calls = []

        def racing_get(key):
            calls.append(key)
            # First lookup misses, as if the winner had not committed yet
            return None if len(calls) == 1 else real_get(key)

        store.get_by_key = racing_get
        report, created = store.create_if_absent("k" * 64, owner_id="user-1")

        assert created is False
        assert report.id == winner.id
        assert len(calls) == 2

    def test_insert_conflict_raises_conflict_error(self, db_session):
        store = ReportStore(db_session)
        store.create_if_absent("a" * 64, owner_id="user-1")
        with pytest.raises(ConflictError):
            store._insert(Report(input_key="a" * 64, owner_id="user-1", status="partial"))

    def test_compare_and_swap_requires_from_status(self, db_session):
        store = ReportStore(db_session)
        report, _ = store.create_if_absent("b" * 64, owner_id="user-1")

        assert store.compare_and_swap_status(report.id, ReportStatus.COMPLETE, ReportStatus.FAILED) is False
        assert store.compare_and_swap_status(report.id, ReportStatus.PARTIAL, ReportStatus.FAILED,
                                             error_code="X") is True
        assert store.get(report.id).status == ReportStatus.FAILED.value

    def test_compare_and_swap_checks_revision(self, db_session):
        store = ReportStore(db_session)
        report, _ = store.create_if_absent("c" * 64, owner_id="user-1")
        stale_revision = report.revision
        store.update(report, label_confirmed_fields={"units_per_case": 6})

        assert store.compare_and_swap_status(report.id, ReportStatus.PARTIAL, ReportStatus.COMPLETE,
                                             expected_revision=stale_revision) is False
        assert store.get(report.id).status == ReportStatus.PARTIAL.value


class TestUpgradeReport:
    """Background upgrade from partial to complete or failed."""

    def test_upgrade_completes_report(self, db_session, submit):
        from landedcost.services.upgrader import upgrade_report

        submission = submit(quantity=100, duty_rate=0.05, shipping_cost=20, fee=2)
        outcome = upgrade_report(db_session, submission.report.id, provider=MockVisionProvider())

        assert outcome.result == "completed"
        report = ReportStore(db_session).get(submission.report.id)
        assert report.status == ReportStatus.COMPLETE.value
        assert report.category_key == "toys"
        assert report.classification_candidates[0]["code"] == "9503.00.00"
        assert report.baseline["total_landed"]["min"] <= report.baseline["total_landed"]["max"]
        assert report.signals["has_category_baseline"] is True
        assert {r["kind"] for r in report.evidence} == {"label", "weight", "barcode", "classification"}
        assert report.pipeline_result["analysis"]["hs_code"] == "9503.00.00"

    def test_upgrade_is_noop_when_not_partial(self, db_session, submit):
        from landedcost.services.upgrader import upgrade_report

        submission = submit(quantity=100)
        upgrade_report(db_session, submission.report.id, provider=MockVisionProvider())
        before = ReportStore(db_session).get(submission.report.id).revision

        outcome = upgrade_report(db_session, submission.report.id, provider=MockVisionProvider())
        assert outcome.result == "skipped"
        assert ReportStore(db_session).get(submission.report.id).revision == before

    def test_analysis_failure_marks_report_failed(self, db_session, submit):
        from landedcost.services.upgrader import upgrade_report

        submission = submit(product="https://img.test/analysisfail_plush_toy.jpg", quantity=100)
        outcome = upgrade_report(db_session, submission.report.id, provider=MockVisionProvider())

        assert outcome.result == "failed"
        report = ReportStore(db_session).get(submission.report.id)
        assert report.status == ReportStatus.FAILED.value
        assert report.error_code == "UPGRADE_FAILED"
        assert report.error_step == "deep_analysis"

    def test_late_result_discarded_when_report_changed(self, db_session, submit):
        from landedcost.services.upgrader import upgrade_report

        submission = submit(quantity=100)
        report_id = submission.report.id
        store = ReportStore(db_session)

        def fail_meanwhile(images, facts):
            store.compare_and_swap_status(report_id, ReportStatus.PARTIAL, ReportStatus.FAILED,
                                          error_code="CANCELLED", error_step="test")
            return {"product_name": "Plush Toy Bear"}

        provider = MockVisionProvider()
        with patch.object(provider, "analyze_product", AsyncMock(side_effect=fail_meanwhile)):
            outcome = upgrade_report(db_session, report_id, provider=provider)

        assert outcome.result == "stale"
        report = store.get(report_id)
        assert report.status == ReportStatus.FAILED.value
        assert report.error_code == "CANCELLED"

    def test_manual_correction_during_upgrade_is_kept(self, db_session, submit):
        from landedcost.services import upgrader
        from landedcost.services.estimates import apply_manual_label

        submission = submit(quantity=100)
        report_id = submission.report.id
        real_build = upgrader.build_derived_fields
        calls = []

        def correct_then_build(store, report, facts, analysis):
            calls.append(report.revision)
            if len(calls) == 1:
                apply_manual_label(store.db, report, {"net_weight_grams": 300})
            return real_build(store, report, facts, analysis)

        with patch.object(upgrader, "build_derived_fields", side_effect=correct_then_build):
            outcome = upgrader.upgrade_report(db_session, report_id, provider=MockVisionProvider())

        assert outcome.result == "completed"
        assert len(calls) == 2
        report = ReportStore(db_session).get(report_id)
        assert report.label_confirmed_fields["net_weight_grams"] == 300
        assert report.baseline["assumptions"]["weight_kg"] == pytest.approx(0.3)
        assert report.label_extraction_status == "manual"


class TestOutbox:
    """Outbox dispatch, acknowledgement and crash recovery."""

    def test_eager_dispatch_runs_and_acks(self, db_session, submit):
        submission = submit(quantity=100)
        dispatch_report_task(submission.task_id)

        db_session.expire_all()
        task = OutboxStore(db_session).get(submission.task_id)
        assert task.status == TaskStatus.DONE.value
        assert task.attempts == 1
        assert ReportStore(db_session).get(submission.report.id).status == ReportStatus.COMPLETE.value

    def test_claimed_task_is_not_run_twice(self, db_session, submit):
        submission = submit(quantity=100)
        run_report_task(submission.task_id)
        assert run_report_task(submission.task_id) is None

        db_session.expire_all()
        assert OutboxStore(db_session).get(submission.task_id).attempts == 1

    def test_drain_recovers_stale_dispatched_task(self, db_session, submit):
        submission = submit(quantity=100)
        task = OutboxStore(db_session).get(submission.task_id)
        task.status = TaskStatus.DISPATCHED.value
        task.dispatched_at = utcnow() - timedelta(hours=1)
        db_session.commit()

        assert drain_report_tasks(db_session) == 1

        db_session.expire_all()
        assert OutboxStore(db_session).get(submission.task_id).status == TaskStatus.DONE.value
        assert ReportStore(db_session).get(submission.report.id).status == ReportStatus.COMPLETE.value

    def test_drain_leaves_recent_dispatch_alone(self, db_session, submit):
        submission = submit(quantity=100)
        OutboxStore(db_session).mark_dispatched(submission.task_id)

        assert drain_report_tasks(db_session) == 0

    def test_pending_task_is_drained(self, db_session, submit):
        submission = submit(quantity=100)
        assert drain_report_tasks(db_session) == 1
        db_session.expire_all()
        assert ReportStore(db_session).get(submission.report.id).status == ReportStatus.COMPLETE.value

    def test_retries_until_attempts_exhausted(self, db_session, submit):
        submission = submit(quantity=100)

        with patch("landedcost.services.upgrader.upgrade_report", side_effect=RuntimeError("worker crashed")):
            for _ in range(2):
                run_report_task(submission.task_id)
                db_session.expire_all()
                assert OutboxStore(db_session).get(submission.task_id).status == TaskStatus.PENDING.value
            run_report_task(submission.task_id)

        db_session.expire_all()
        task = OutboxStore(db_session).get(submission.task_id)
        assert task.status == TaskStatus.FAILED.value
        assert task.attempts == 3
        assert "worker crashed" in task.last_error
        report = ReportStore(db_session).get(submission.report.id)
        assert report.status == ReportStatus.FAILED.value
        assert report.error_code == "UPGRADE_EXHAUSTED"
