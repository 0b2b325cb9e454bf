"""Unit tests for the workflow engine

Tests cover:
- Walking a file from UPLOADED to COMPLETED
- Revision counting for FAIL and REVISE
- Ledger rows and QCReview records written per transition
- Illegal actions leave no trace
- expectedStage guard, tenant isolation, pending files
- ARCHIVE and REOPEN
- Version preconditions and all-or-nothing transitions
- Reassignment within a stage
"""

from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from reviewflow.domain.workflow import WorkflowAction
from reviewflow.errors import (
    InvalidStageConfiguration,
    InvalidTransition,
    NotFound,
    PersistenceUnavailable,
)
from reviewflow.ledger.ledger import TransitionLedger
from reviewflow.models import AuditLog, File, QCReview, StageTransition, WorkflowStage
from reviewflow.workflow import engine
from reviewflow.workflow.engine import apply_action, parse_action, reassign_file
from reviewflow.workflow.stages import update_stage


def _walk(db, tenant_id, file_id, actor_id, *actions):
    result = None
    for action in actions:
        result = apply_action(db, tenant_id, file_id, actor_id, action)
    return result


class TestParseAction:

    def test_accepts_names_case_insensitively(self):
        assert parse_action("approve") == WorkflowAction.APPROVE
        assert parse_action(WorkflowAction.FAIL) == WorkflowAction.FAIL

    def test_unknown_action_is_invalid_transition(self):
        with pytest.raises(InvalidTransition) as exc_info:
            parse_action("PUBLISH")
        assert "ASSIGN" in exc_info.value.details["allowed"]


class TestHappyPath:
    """Test a file walking through every default stage"""

    def test_full_walk_to_completed(self, db_session, tenant, confirmed_file, reviewer_id):
        assert confirmed_file.current_stage == "UPLOADED"

        result = _walk(
            db_session, tenant.id, confirmed_file.id, reviewer_id,
            "ASSIGN", "APPROVE", "APPROVE", "APPROVE", "APPROVE", "APPROVE",
        )

        assert result.new_stage == "COMPLETED"
        assert result.previous_stage == "R4"
        assert result.file.revision_count == 0

        history = TransitionLedger(db_session).list_for_file(tenant.id, confirmed_file.id)
        assert [t.to_stage for t in history] == [
            "UPLOADED", "QC", "R1", "R2", "R3", "R4", "COMPLETED",
        ]
        assert history[0].from_stage is None
        assert history[0].actor_id is None
        assert all(t.actor_id == reviewer_id for t in history[1:])

    def test_each_transition_chains_from_previous(self, db_session, tenant, confirmed_file, reviewer_id):
        _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", "APPROVE", "FAIL", "REVISE")

        history = TransitionLedger(db_session).list_for_file(tenant.id, confirmed_file.id)
        for earlier, later in zip(history, history[1:]):
            assert later.from_stage == earlier.to_stage

    def test_file_stage_matches_ledger_after_every_step(self, db_session, tenant, confirmed_file, reviewer_id):
        ledger = TransitionLedger(db_session)
        for action in ["ASSIGN", "APPROVE", "FAIL", "REVISE", "APPROVE", "ARCHIVE", "REOPEN"]:
            apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, action)
            file = db_session.get(File, confirmed_file.id)
            ledger.verify(file)
            assert ledger.current_stage(tenant.id, file.id) == file.current_stage


class TestRevisionCount:

    def test_fail_increments_and_stays(self, db_session, tenant, confirmed_file, reviewer_id):
        result = _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", "APPROVE", "FAIL")
        assert result.new_stage == "R1"
        assert result.file.revision_count == 1

    def test_revise_increments_and_goes_back(self, db_session, tenant, confirmed_file, reviewer_id):
        result = _walk(
            db_session, tenant.id, confirmed_file.id, reviewer_id,
            "ASSIGN", "APPROVE", "APPROVE", "REVISE",
        )
        assert result.new_stage == "R1"
        assert result.file.revision_count == 1

    def test_count_equals_fail_and_revise_rows(self, db_session, tenant, confirmed_file, reviewer_id):
        actions = ["ASSIGN", "FAIL", "FAIL", "APPROVE", "REVISE", "APPROVE", "APPROVE", "FAIL", "REOPEN"]
        result = _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, *actions)

        rows = TransitionLedger(db_session).list_for_file(tenant.id, confirmed_file.id)
        rejections = [r for r in rows if r.action in ("FAIL", "REVISE")]
        assert result.file.revision_count == len(rejections) == 4

    def test_reopen_keeps_revision_count(self, db_session, tenant, confirmed_file, reviewer_id):
        _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", "FAIL")
        result = apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "REOPEN")
        assert result.new_stage == "QC"
        assert result.file.revision_count == 1


class TestIllegalActions:
    """Illegal actions are rejected and leave nothing behind"""

    def test_approve_from_uploaded_rejected(self, db_session, tenant, confirmed_file, reviewer_id):
        before = db_session.query(StageTransition).count()

        with pytest.raises(InvalidTransition):
            apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "APPROVE")

        file = db_session.get(File, confirmed_file.id)
        assert file.current_stage == "UPLOADED"
        assert db_session.query(StageTransition).count() == before

    def test_revise_from_first_stage_rejected(self, db_session, tenant, confirmed_file, reviewer_id):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        with pytest.raises(InvalidTransition):
            apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "REVISE")
        assert db_session.get(File, confirmed_file.id).revision_count == 0

    def test_completed_file_cannot_be_approved(self, db_session, tenant, confirmed_file, reviewer_id):
        _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", *["APPROVE"] * 5)
        with pytest.raises(InvalidTransition):
            apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "APPROVE")

    def test_stale_expected_stage_rejected(self, db_session, tenant, confirmed_file, reviewer_id):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "APPROVE", expected_stage="QC")

        with pytest.raises(InvalidTransition) as exc_info:
            apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "APPROVE", expected_stage="QC")

        assert exc_info.value.details["current_stage"] == "R1"
        assert db_session.get(File, confirmed_file.id).current_stage == "R1"


class TestFileLookup:

    def test_other_tenant_gets_not_found(self, db_session, tenant, other_tenant, confirmed_file, reviewer_id):
        with pytest.raises(NotFound):
            apply_action(db_session, other_tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        assert db_session.get(File, confirmed_file.id).current_stage == "UPLOADED"

    def test_unknown_file_not_found(self, db_session, tenant, reviewer_id):
        with pytest.raises(NotFound):
            apply_action(db_session, tenant.id, uuid4(), reviewer_id, "ASSIGN")

    def test_pending_file_not_in_workflow(self, db_session, tenant, reviewer_id):
        pending = File(
            tenant_id=tenant.id,
            original_name="pending.pdf",
            mime_type="application/pdf",
            size_bytes=10,
            storage_key=f"{tenant.id}/unfiled/{uuid4().hex}/pending.pdf",
            upload_status="PENDING",
        )
        db_session.add(pending)
        db_session.commit()

        with pytest.raises(NotFound):
            apply_action(db_session, tenant.id, pending.id, reviewer_id, "ASSIGN")


class TestQCReviews:
    """Test review records opened and closed by transitions"""

    def _reviews(self, db, file_id):
        return (
            db.query(QCReview)
            .filter(QCReview.file_id == file_id)
            .order_by(QCReview.created_at.asc())
            .all()
        )

    def test_entering_stage_opens_review(self, db_session, tenant, confirmed_file, reviewer_id):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        reviews = self._reviews(db_session, confirmed_file.id)
        assert len(reviews) == 1
        assert reviews[0].stage == "QC"
        assert reviews[0].status == "PENDING"

    def test_approve_closes_and_opens_next(self, db_session, tenant, confirmed_file, reviewer_id):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "APPROVE", comment="Looks right")

        qc, r1 = self._reviews(db_session, confirmed_file.id)
        assert (qc.stage, qc.status, qc.action, qc.comment) == ("QC", "COMPLETED", "APPROVE", "Looks right")
        assert qc.reviewer_id == reviewer_id
        assert qc.completed_at is not None
        assert (r1.stage, r1.status) == ("R1", "PENDING")

    def test_fail_closes_and_reopens_same_stage(self, db_session, tenant, confirmed_file, reviewer_id):
        _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", "FAIL")
        reviews = self._reviews(db_session, confirmed_file.id)
        assert [(r.stage, r.status) for r in reviews] == [("QC", "COMPLETED"), ("QC", "PENDING")]

    def test_at_most_one_open_review(self, db_session, tenant, confirmed_file, reviewer_id):
        _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", "FAIL", "APPROVE", "REVISE", "FAIL")
        open_reviews = [r for r in self._reviews(db_session, confirmed_file.id) if r.status == "PENDING"]
        assert len(open_reviews) == 1

    def test_completion_and_archive_leave_no_open_review(self, db_session, tenant, confirmed_file, reviewer_id):
        _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", "APPROVE", "ARCHIVE")
        assert all(r.status == "COMPLETED" for r in self._reviews(db_session, confirmed_file.id))

    def test_assignee_recorded(self, db_session, tenant, confirmed_file, reviewer_id):
        assignee = uuid4()
        result = apply_action(
            db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", assign_to=assignee
        )
        assert result.file.assigned_to == assignee
        assert self._reviews(db_session, confirmed_file.id)[0].reviewer_id == assignee


class TestArchiveAndReopen:

    def test_archive_from_review(self, db_session, tenant, confirmed_file, reviewer_id):
        result = _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", "ARCHIVE")
        assert result.new_stage == "ARCHIVED"

    def test_archive_works_without_active_stages(self, db_session, tenant, confirmed_file, reviewer_id):
        db_session.query(WorkflowStage).filter(WorkflowStage.tenant_id == tenant.id).update(
            {"is_active": False}
        )
        db_session.commit()

        with pytest.raises(InvalidStageConfiguration):
            apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")

        result = apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ARCHIVE")
        assert result.new_stage == "ARCHIVED"

    def test_reopen_completed_file(self, db_session, tenant, confirmed_file, reviewer_id):
        _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", *["APPROVE"] * 5)
        result = apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "REOPEN")
        assert result.previous_stage == "COMPLETED"
        assert result.new_stage == "QC"


class TestStageConfigurationChanges:

    def test_reordered_stages_change_first_stage(self, db_session, tenant, confirmed_file, reviewer_id):
        r3 = db_session.query(WorkflowStage).filter_by(tenant_id=tenant.id, name="R3").one()
        update_stage(db_session, tenant.id, r3.id, order_index=0)

        _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", "APPROVE")
        history = TransitionLedger(db_session).list_for_file(tenant.id, confirmed_file.id)
        assert [t.to_stage for t in history] == ["UPLOADED", "R3", "QC"]

    def test_deactivated_stage_is_skipped(self, db_session, tenant, confirmed_file, reviewer_id):
        r1 = db_session.query(WorkflowStage).filter_by(tenant_id=tenant.id, name="R1").one()
        update_stage(db_session, tenant.id, r1.id, is_active=False)

        result = _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", "APPROVE")
        assert result.new_stage == "R2"


class TestVersionPrecondition:
    """Test that an action built from an outdated view of a file is rejected"""

    def test_every_transition_bumps_version(self, db_session, tenant, confirmed_file, reviewer_id):
        before = confirmed_file.version
        result = apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        assert result.file.version > before

    def test_second_fail_from_same_version_is_rejected(self, db_session, tenant, confirmed_file, reviewer_id):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        seen = db_session.get(File, confirmed_file.id).version

        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "FAIL", expected_version=seen)
        with pytest.raises(InvalidTransition) as exc_info:
            apply_action(db_session, tenant.id, confirmed_file.id, uuid4(), "FAIL", expected_version=seen)

        assert exc_info.value.details["expected_version"] == seen
        assert exc_info.value.details["current_stage"] == "QC"
        file = db_session.get(File, confirmed_file.id)
        assert file.revision_count == 1
        fails = [
            t for t in TransitionLedger(db_session).list_for_file(tenant.id, file.id)
            if t.action == "FAIL"
        ]
        assert len(fails) == 1

    def test_current_version_is_accepted(self, db_session, tenant, confirmed_file, reviewer_id):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        first = apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "FAIL")

        second = apply_action(
            db_session, tenant.id, confirmed_file.id, reviewer_id, "FAIL",
            expected_version=first.file.version,
        )
        assert second.file.revision_count == 2

    def test_commit_while_waiting_for_lock_makes_request_stale(
        self, db_session, tenant, confirmed_file, reviewer_id, monkeypatch
    ):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        ledger_before = len(TransitionLedger(db_session).list_for_file(tenant.id, confirmed_file.id))
        current = db_session.get(File, confirmed_file.id).version

        # The version read before locking predates a transition that committed meanwhile
        monkeypatch.setattr(engine, "read_version", lambda db, tenant_id, file_id: current - 1)

        with pytest.raises(InvalidTransition):
            apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "APPROVE")

        file = db_session.get(File, confirmed_file.id)
        assert file.current_stage == "QC"
        assert len(TransitionLedger(db_session).list_for_file(tenant.id, file.id)) == ledger_before

    def test_plain_sequential_actions_still_apply(self, db_session, tenant, confirmed_file, reviewer_id):
        result = _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", "APPROVE", "APPROVE")
        assert result.new_stage == "R2"


class TestAtomicity:
    """Test that a failure after the file row is flushed undoes the whole transition"""

    def _snapshot(self, db, tenant_id, file_id):
        db.expire_all()
        file = db.get(File, file_id)
        history = TransitionLedger(db).list_for_file(tenant_id, file_id)
        return file, (file.current_stage, file.revision_count, len(history))

    def test_ledger_failure_rolls_back_file(self, db_session, tenant, confirmed_file, reviewer_id, monkeypatch):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        _, before = self._snapshot(db_session, tenant.id, confirmed_file.id)

        def broken_append(self, **kwargs):
            raise PersistenceUnavailable("Failed to record workflow transition")

        monkeypatch.setattr(TransitionLedger, "append", broken_append)
        with pytest.raises(PersistenceUnavailable):
            apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "APPROVE")
        monkeypatch.undo()

        file, after = self._snapshot(db_session, tenant.id, confirmed_file.id)
        assert after == before == ("QC", 0, 2)
        TransitionLedger(db_session).verify(file)

    def test_review_write_failure_rolls_back_file_and_ledger(
        self, db_session, tenant, confirmed_file, reviewer_id, monkeypatch
    ):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        _, before = self._snapshot(db_session, tenant.id, confirmed_file.id)

        def broken_open_review(db, file, stage, now):
            raise OperationalError("INSERT INTO qc_review", {}, Exception("disk I/O error"))

        monkeypatch.setattr(engine, "_open_review", broken_open_review)
        with pytest.raises(PersistenceUnavailable):
            apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "FAIL")

        file, after = self._snapshot(db_session, tenant.id, confirmed_file.id)
        assert after == before
        assert file.revision_count == 0
        TransitionLedger(db_session).verify(file)
        # The review closed by the failed FAIL is open again
        reviews = db_session.query(QCReview).filter(QCReview.file_id == file.id).all()
        assert [(r.stage, r.status) for r in reviews] == [("QC", "PENDING")]


class TestReassign:
    """Test handing a file to another reviewer inside its stage"""

    def _open_review(self, db, file_id):
        return (
            db.query(QCReview)
            .filter(QCReview.file_id == file_id, QCReview.status == "PENDING")
            .one()
        )

    def test_updates_assignee_and_open_review(self, db_session, tenant, confirmed_file, reviewer_id):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", assign_to=reviewer_id)
        ledger_before = len(TransitionLedger(db_session).list_for_file(tenant.id, confirmed_file.id))
        colleague = uuid4()

        file = reassign_file(db_session, tenant.id, confirmed_file.id, reviewer_id, colleague)

        assert file.current_stage == "QC"
        assert file.assigned_to == colleague
        assert self._open_review(db_session, file.id).reviewer_id == colleague
        assert len(TransitionLedger(db_session).list_for_file(tenant.id, file.id)) == ledger_before

    def test_is_audited(self, db_session, tenant, confirmed_file, reviewer_id):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", assign_to=reviewer_id)
        colleague = uuid4()

        reassign_file(db_session, tenant.id, confirmed_file.id, reviewer_id, colleague)

        entry = db_session.query(AuditLog).filter(AuditLog.action == "FILE_REASSIGNED").one()
        assert entry.entity_id == confirmed_file.id
        assert entry.actor_id == reviewer_id
        assert entry.metadata_json == {
            "stage": "QC",
            "from_assignee": str(reviewer_id),
            "to_assignee": str(colleague),
        }

    def test_clearing_assignee(self, db_session, tenant, confirmed_file, reviewer_id):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", assign_to=reviewer_id)

        file = reassign_file(db_session, tenant.id, confirmed_file.id, reviewer_id, None)

        assert file.assigned_to is None
        assert self._open_review(db_session, file.id).reviewer_id is None

    def test_terminal_file_cannot_be_reassigned(self, db_session, tenant, confirmed_file, reviewer_id):
        _walk(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", "ARCHIVE")

        with pytest.raises(InvalidTransition):
            reassign_file(db_session, tenant.id, confirmed_file.id, reviewer_id, uuid4())

    def test_stale_version_is_rejected(self, db_session, tenant, confirmed_file, reviewer_id):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN", assign_to=reviewer_id)
        seen = db_session.get(File, confirmed_file.id).version
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "FAIL")

        with pytest.raises(InvalidTransition):
            reassign_file(db_session, tenant.id, confirmed_file.id, reviewer_id, uuid4(), expected_version=seen)

        assert db_session.get(File, confirmed_file.id).assigned_to == reviewer_id

    def test_other_tenant_file_is_not_found(self, db_session, tenant, other_tenant, confirmed_file, reviewer_id):
        with pytest.raises(NotFound):
            reassign_file(db_session, other_tenant.id, confirmed_file.id, reviewer_id, uuid4())
