"""
Tests for the append-only, hash-chained approval history.

Tests cover:
- Every transition appends exactly one entry, in sequence
- verify_history detects tampering with stored rows
- ORM-level immutability: history rows, terminal requests and retained
  rows cannot be changed or deleted through the session
"""

from uuid import uuid4

import pytest
from sqlalchemy import select, text

from approval_kernel.domain.workflow import Decision, HistoryEventKind
from approval_kernel.exceptions import (
    HistoryChainBrokenError,
    ImmutabilityViolationError,
    InstanceNotFoundError,
)
from approval_kernel.models.history import ApprovalHistoryModel
from approval_kernel.models.workflow import ApprovalRequestModel, WorkflowInstanceModel
from approval_kernel.services.history_recorder import HistoryRecorder
from approval_kernel.utils.hashing import GENESIS


@pytest.fixture
def finished(engine, make_definition):
    """A two-step sequential instance approved end to end."""
    definition = make_definition("sequential", (1, "user", "alice"), (2, "user", "bob"))
    instance = engine.start(definition.definition_id, "proposal", "P-1", "ivan")
    first = engine.get_requests(instance.instance_id)[0]
    engine.decide(first.request_id, "alice", Decision.APPROVE, "ok")
    second = engine.get_requests(instance.instance_id)[1]
    engine.decide(second.request_id, "bob", Decision.APPROVE)
    return instance


def test_one_entry_per_transition(engine, finished):
    history = engine.get_history(finished.instance_id)

    assert [h.kind for h in history] == [
        HistoryEventKind.STARTED,
        HistoryEventKind.APPROVED,
        HistoryEventKind.APPROVED,
    ]
    assert [h.seq for h in history] == [1, 2, 3]
    assert history[0].prev_hash is None
    assert history[1].prev_hash == history[0].hash
    assert history[2].prev_hash == history[1].hash


def test_chain_verifies(engine, finished):
    assert engine.verify_history(finished.instance_id) is True


def test_verify_unknown_instance(engine):
    with pytest.raises(InstanceNotFoundError):
        engine.verify_history(uuid4())


def test_recorder_list_and_empty_chain(session, finished, deterministic_clock):
    recorder = HistoryRecorder(session, deterministic_clock)
    assert len(recorder.list_for_instance(finished.instance_id)) == 3

    assert recorder.verify_chain(uuid4()) is True


def test_tampered_comment_breaks_chain(engine, finished, session, db_engine):
    if db_engine.dialect.name == "postgresql":
        pytest.skip("history triggers reject raw updates on PostgreSQL")

    session.execute(
        text("UPDATE approval_history SET comment = 'forged' WHERE seq = 2")
    )
    session.commit()

    with pytest.raises(HistoryChainBrokenError) as exc_info:
        engine.verify_history(finished.instance_id)
    assert exc_info.value.seq == 2


def test_deleted_entry_breaks_chain(engine, finished, session, db_engine):
    if db_engine.dialect.name == "postgresql":
        pytest.skip("history triggers reject raw deletes on PostgreSQL")

    session.execute(text("DELETE FROM approval_history WHERE seq = 2"))
    session.commit()

    with pytest.raises(HistoryChainBrokenError):
        engine.verify_history(finished.instance_id)


def test_genesis_marker_reported_for_first_entry(engine, finished, session, db_engine):
    if db_engine.dialect.name == "postgresql":
        pytest.skip("history triggers reject raw deletes on PostgreSQL")

    session.execute(text("DELETE FROM approval_history WHERE seq = 1"))
    session.commit()

    with pytest.raises(HistoryChainBrokenError) as exc_info:
        engine.verify_history(finished.instance_id)
    assert exc_info.value.expected_hash == GENESIS


class TestOrmImmutability:
    def test_history_update_rejected(self, session, finished):
        entry = session.execute(select(ApprovalHistoryModel).limit(1)).scalar_one()
        entry.comment = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_history_delete_rejected(self, session, finished):
        entry = session.execute(select(ApprovalHistoryModel).limit(1)).scalar_one()
        session.delete(entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_terminal_request_status_is_final(self, session, finished):
        request = session.execute(select(ApprovalRequestModel).limit(1)).scalar_one()
        request.status = "pending"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_instances_are_retained(self, session, finished):
        instance = session.get(WorkflowInstanceModel, finished.instance_id)
        session.delete(instance)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
