"""
Tests for sequential instances that stall on a step nobody can approve.

The approval completing the previous step commits; the engine then raises
NoApproverForStepError and leaves the instance pending with
``blocked_step`` set until an operator calls ``resume`` or ``cancel``.
"""

import pytest

from approval_kernel.domain.workflow import Decision, HistoryEventKind, InstanceStatus, RequestStatus
from approval_kernel.exceptions import (
    AlreadyTerminalError,
    NoApproverForStepError,
    NotBlockedError,
)


@pytest.fixture
def blocked(engine, directory, make_definition):
    """A sequential instance whose step 2 role has been vacated."""
    definition = make_definition("sequential", (1, "user", "alice"), (2, "role", "finance"))
    instance = engine.start(definition.definition_id, "proposal", "P-1", "ivan")
    first = engine.get_requests(instance.instance_id)[0]

    directory.revoke("finance", "fiona")
    with pytest.raises(NoApproverForStepError) as exc_info:
        engine.decide(first.request_id, "alice", Decision.APPROVE)

    assert exc_info.value.step_order == 2
    return instance, first


def test_approval_is_committed_and_instance_stays_pending(engine, blocked):
    instance, first = blocked

    current = engine.get_instance(instance.instance_id)
    assert current.status == InstanceStatus.PENDING
    assert current.blocked_step == 2
    assert current.current_step == 2
    assert engine.get_request(first.request_id).status == RequestStatus.APPROVED
    assert [h.kind for h in engine.get_history(instance.instance_id)] == [
        HistoryEventKind.STARTED,
        HistoryEventKind.APPROVED,
    ]


def test_unresolvable_step_is_logged(engine, directory, make_definition, captured_logs):
    definition = make_definition("sequential", (1, "user", "alice"), (2, "role", "empty"))
    instance = engine.start(definition.definition_id, "proposal", "P-1", "ivan")
    first = engine.get_requests(instance.instance_id)[0]

    with pytest.raises(NoApproverForStepError):
        engine.decide(first.request_id, "alice", Decision.APPROVE)

    messages = {r["message"]: r for r in captured_logs()}
    assert messages["workflow_step_unresolvable"]["level"] == "WARNING"


def test_resume_while_still_unresolvable_writes_nothing(engine, blocked):
    instance, _ = blocked
    before = engine.get_instance(instance.instance_id)

    with pytest.raises(NoApproverForStepError):
        engine.resume(instance.instance_id, "operator")

    assert engine.get_instance(instance.instance_id) == before
    assert len(engine.get_requests(instance.instance_id)) == 1


def test_resume_after_role_is_filled(engine, directory, blocked):
    instance, _ = blocked
    directory.assign("finance", "gary")

    resumed = engine.resume(instance.instance_id, "operator")

    assert resumed.blocked_step is None
    assert resumed.current_step == 2
    requests = engine.get_requests(instance.instance_id)
    assert [(r.step_order, r.approver) for r in requests] == [(1, "alice"), (2, "gary")]

    final = engine.decide(requests[1].request_id, "gary", Decision.APPROVE)
    assert final.status == InstanceStatus.APPROVED


def test_cancel_a_blocked_instance(engine, blocked):
    instance, _ = blocked
    cancelled = engine.cancel(instance.instance_id, "operator", "no finance reviewer")
    assert cancelled.status == InstanceStatus.CANCELLED
    assert cancelled.blocked_step is None

    with pytest.raises(AlreadyTerminalError):
        engine.resume(instance.instance_id, "operator")


def test_resume_requires_a_blocked_instance(engine, make_definition):
    definition = make_definition("sequential", (1, "user", "alice"))
    instance = engine.start(definition.definition_id, "proposal", "P-1", "ivan")
    with pytest.raises(NotBlockedError):
        engine.resume(instance.instance_id, "operator")
