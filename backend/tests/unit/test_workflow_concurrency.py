"""Concurrency tests for the workflow engine

Two reviewers act on the same file at the same moment. Exactly one action
lands; the other sees Busy (lost the row) or InvalidTransition (saw the
moved file or a newer version). The ledger never records both.

Uses a file-backed SQLite database so each thread has its own connection.
"""

import threading
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from conftest import FakeObjectStorage, make_confirmed_file
from reviewflow.database import build_engine
from reviewflow.errors import Busy, InvalidTransition
from reviewflow.ledger.ledger import TransitionLedger
from reviewflow.models import Base, File
from reviewflow.tenancy.service import provision_tenant
from reviewflow.workflow.engine import apply_action


@pytest.fixture
def file_db(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'reviewflow.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def file_in_qc(file_db):
    session = file_db()
    try:
        tenant = provision_tenant(session, name="Acme Studio", slug="acme")
        file = make_confirmed_file(session, FakeObjectStorage(), tenant.id)
        apply_action(session, tenant.id, file.id, uuid4(), "ASSIGN")
        return tenant.id, file.id
    finally:
        session.close()


def _race(file_db, tenant_id, file_id, action, **preconditions):
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def worker():
        session = file_db()
        try:
            barrier.wait()
            apply_action(session, tenant_id, file_id, uuid4(), action, **preconditions)
            outcome = "ok"
        except (Busy, InvalidTransition) as e:
            outcome = e.code
        finally:
            session.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


def test_concurrent_approvals_apply_once(file_db, file_in_qc):
    tenant_id, file_id = file_in_qc

    outcomes = _race(file_db, tenant_id, file_id, "APPROVE", expected_stage="QC")

    assert len(outcomes) == 2
    assert outcomes.count("ok") == 1
    assert set(outcomes) - {"ok"} <= {"Busy", "InvalidTransition"}

    session = file_db()
    try:
        file = session.get(File, file_id)
        assert file.current_stage == "R1"
        rows = TransitionLedger(session).list_for_file(tenant_id, file_id)
        assert [r.action for r in rows].count("APPROVE") == 1
        TransitionLedger(session).verify(file)
    finally:
        session.close()


def _version(file_db, file_id):
    session = file_db()
    try:
        return session.get(File, file_id).version
    finally:
        session.close()


def test_concurrent_fails_from_same_view_count_once(file_db, file_in_qc):
    tenant_id, file_id = file_in_qc
    seen = _version(file_db, file_id)

    outcomes = _race(file_db, tenant_id, file_id, "FAIL", expected_version=seen)

    assert len(outcomes) == 2
    assert outcomes.count("ok") == 1
    assert set(outcomes) - {"ok"} <= {"Busy", "InvalidTransition"}

    session = file_db()
    try:
        file = session.get(File, file_id)
        rows = TransitionLedger(session).list_for_file(tenant_id, file_id)
        fails = [r for r in rows if r.action == "FAIL"]
        assert len(fails) == 1
        assert file.revision_count == 1
        assert file.current_stage == "QC"
        TransitionLedger(session).verify(file)
    finally:
        session.close()
