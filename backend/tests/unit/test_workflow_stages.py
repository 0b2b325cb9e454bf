"""Unit tests for per-tenant stage configuration"""

from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql

from reviewflow.errors import InvalidStageConfiguration, NotFound
from reviewflow.models import AuditLog, WorkflowStage
from reviewflow.tenancy.service import provision_tenant
from reviewflow.workflow import engine
from reviewflow.workflow.engine import apply_action
from reviewflow.workflow.stages import (
    active_stages_query,
    create_stage,
    get_active_stages,
    list_stages,
    load_stage_sequence,
    provision_default_stages,
    update_stage,
)


def _stage(db, tenant_id, name):
    return db.query(WorkflowStage).filter_by(tenant_id=tenant_id, name=name).one()


class TestProvisioning:

    def test_new_tenant_gets_default_stages(self, db_session, tenant):
        stages = list_stages(db_session, tenant.id)
        assert [(s.name, s.display_name, s.order_index) for s in stages] == [
            ("QC", "Quality Control", 1),
            ("R1", "Revision 1", 2),
            ("R2", "Revision 2", 3),
            ("R3", "Revision 3", 4),
            ("R4", "Revision 4", 5),
        ]
        assert all(s.is_active for s in stages)

    def test_provisioning_is_idempotent(self, db_session, tenant):
        provision_default_stages(db_session, tenant.id)
        db_session.commit()
        again = provision_tenant(db_session, name="Acme Studio", slug="acme")

        assert again.id == tenant.id
        assert len(list_stages(db_session, tenant.id)) == 5

    def test_stages_are_per_tenant(self, db_session, tenant, other_tenant):
        create_stage(db_session, tenant.id, "LEGAL", "Legal Review", 6)
        assert len(list_stages(db_session, tenant.id)) == 6
        assert len(list_stages(db_session, other_tenant.id)) == 5

    def test_invalid_slug_rejected(self, db_session):
        with pytest.raises(ValueError):
            provision_tenant(db_session, name="Bad", slug="Not A Slug")


class TestCreateStage:

    def test_creates_and_audits(self, db_session, tenant):
        actor = uuid4()
        stage = create_stage(db_session, tenant.id, "legal", "Legal Review", 6, actor_id=actor)

        assert stage.name == "LEGAL"
        assert load_stage_sequence(db_session, tenant.id).names[-1] == "LEGAL"
        audit = db_session.query(AuditLog).filter_by(action="STAGE_CREATED").one()
        assert audit.actor_id == actor
        assert audit.entity_id == stage.id

    @pytest.mark.parametrize("name", ["UPLOADED", "COMPLETED", "ARCHIVED"])
    def test_reserved_names_rejected(self, db_session, tenant, name):
        with pytest.raises(InvalidStageConfiguration):
            create_stage(db_session, tenant.id, name, name.title(), 9)

    @pytest.mark.parametrize("name", ["", "1ST", "has space", "X" * 33])
    def test_malformed_names_rejected(self, db_session, tenant, name):
        with pytest.raises(InvalidStageConfiguration):
            create_stage(db_session, tenant.id, name, "Whatever", 9)

    def test_duplicate_name_rejected(self, db_session, tenant):
        with pytest.raises(InvalidStageConfiguration):
            create_stage(db_session, tenant.id, "QC", "Another QC", 9)

    def test_duplicate_order_rejected(self, db_session, tenant):
        with pytest.raises(InvalidStageConfiguration):
            create_stage(db_session, tenant.id, "LEGAL", "Legal Review", 3)

    def test_inactive_stage_not_in_sequence(self, db_session, tenant):
        create_stage(db_session, tenant.id, "LEGAL", "Legal Review", 0, is_active=False)
        assert "LEGAL" not in load_stage_sequence(db_session, tenant.id)
        assert "LEGAL" in [s.name for s in list_stages(db_session, tenant.id)]


class TestUpdateStage:

    def test_reorder(self, db_session, tenant):
        update_stage(db_session, tenant.id, _stage(db_session, tenant.id, "R4").id, order_index=0)
        assert load_stage_sequence(db_session, tenant.id).names == ["R4", "QC", "R1", "R2", "R3"]

    def test_reorder_onto_used_index_rejected(self, db_session, tenant):
        r4 = _stage(db_session, tenant.id, "R4")
        with pytest.raises(InvalidStageConfiguration):
            update_stage(db_session, tenant.id, r4.id, order_index=1)
        db_session.refresh(r4)
        assert r4.order_index == 5

    def test_rename_display_name_only(self, db_session, tenant):
        stage = update_stage(
            db_session, tenant.id, _stage(db_session, tenant.id, "QC").id, display_name="  Intake QC "
        )
        assert stage.display_name == "Intake QC"
        assert stage.name == "QC"

    def test_blank_display_name_rejected(self, db_session, tenant):
        with pytest.raises(InvalidStageConfiguration):
            update_stage(db_session, tenant.id, _stage(db_session, tenant.id, "QC").id, display_name="  ")

    def test_deactivate_empty_stage(self, db_session, tenant):
        stage = update_stage(db_session, tenant.id, _stage(db_session, tenant.id, "R4").id, is_active=False)
        assert stage.is_active is False
        assert [s.name for s in get_active_stages(db_session, tenant.id)] == ["QC", "R1", "R2", "R3"]

    def test_deactivate_occupied_stage_rejected(self, db_session, tenant, confirmed_file, reviewer_id):
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        qc = _stage(db_session, tenant.id, "QC")

        with pytest.raises(InvalidStageConfiguration) as exc_info:
            update_stage(db_session, tenant.id, qc.id, is_active=False)

        assert exc_info.value.details == {"stage": "QC", "files": 1}
        db_session.refresh(qc)
        assert qc.is_active is True

    def test_failed_update_changes_nothing(self, db_session, tenant, confirmed_file, reviewer_id):
        """A rejected deactivation does not apply the rename sent with it"""
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")
        qc = _stage(db_session, tenant.id, "QC")

        with pytest.raises(InvalidStageConfiguration):
            update_stage(db_session, tenant.id, qc.id, display_name="Renamed", is_active=False)

        db_session.refresh(qc)
        assert qc.display_name == "Quality Control"

    def test_last_active_stage_cannot_be_deactivated(self, db_session, tenant):
        for name in ["R1", "R2", "R3", "R4"]:
            update_stage(db_session, tenant.id, _stage(db_session, tenant.id, name).id, is_active=False)

        with pytest.raises(InvalidStageConfiguration):
            update_stage(db_session, tenant.id, _stage(db_session, tenant.id, "QC").id, is_active=False)

    def test_other_tenant_stage_not_found(self, db_session, tenant, other_tenant):
        with pytest.raises(NotFound):
            update_stage(db_session, other_tenant.id, _stage(db_session, tenant.id, "QC").id, display_name="X")

    def test_update_is_audited(self, db_session, tenant):
        r2 = _stage(db_session, tenant.id, "R2")
        update_stage(db_session, tenant.id, r2.id, display_name="Second pass")

        audit = db_session.query(AuditLog).filter_by(action="STAGE_UPDATED").one()
        assert audit.metadata_json["before"]["display_name"] == "Revision 2"
        assert audit.metadata_json["after"]["display_name"] == "Second pass"


class TestActiveStages:

    def test_no_active_stages_raises(self, db_session, tenant):
        db_session.query(WorkflowStage).filter_by(tenant_id=tenant.id).update({"is_active": False})
        db_session.commit()
        with pytest.raises(InvalidStageConfiguration):
            get_active_stages(db_session, tenant.id)

    def test_transition_reads_stages_for_share(self, db_session, tenant):
        locked = active_stages_query(db_session, tenant.id, lock=True)
        sql = str(locked.statement.compile(dialect=postgresql.dialect()))
        assert sql.rstrip().endswith("FOR SHARE")

    def test_plain_read_takes_no_lock(self, db_session, tenant):
        plain = active_stages_query(db_session, tenant.id)
        sql = str(plain.statement.compile(dialect=postgresql.dialect()))
        assert "FOR SHARE" not in sql
        assert "FOR UPDATE" not in sql

    def test_engine_locks_stage_rows(self, db_session, tenant, confirmed_file, reviewer_id, monkeypatch):
        calls = []
        load = engine.load_stage_sequence

        def recording_load(db, tenant_id, lock=False):
            calls.append(lock)
            return load(db, tenant_id, lock=lock)

        monkeypatch.setattr(engine, "load_stage_sequence", recording_load)
        apply_action(db_session, tenant.id, confirmed_file.id, reviewer_id, "ASSIGN")

        assert calls == [True]
