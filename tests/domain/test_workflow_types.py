"""
Tests for approval workflow domain types.

Tests cover:
- Request and instance lifecycle tables: pending is the only source state
- EntityContext dict conversion for persisted snapshots
- Actor construction and DTO convenience properties
- DeterministicClock behaviour used by every timing test
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.workflow import (
    TERMINAL_INSTANCE_STATUSES,
    TERMINAL_REQUEST_STATUSES,
    Actor,
    ApprovalRequest,
    EntityContext,
    EntityType,
    InstanceStatus,
    RequestStatus,
    Topology,
    WorkflowInstance,
    can_transition_instance,
    can_transition_request,
)


class TestRequestLifecycle:
    @pytest.mark.parametrize("target", [
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.EXPIRED,
        RequestStatus.SKIPPED,
    ])
    def test_pending_reaches_every_terminal_status(self, target):
        assert can_transition_request(RequestStatus.PENDING, target)

    @pytest.mark.parametrize("source", sorted(TERMINAL_REQUEST_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_are_final(self, source):
        for target in RequestStatus:
            assert not can_transition_request(source, target)

    def test_only_pending_is_non_terminal(self):
        assert set(RequestStatus) - TERMINAL_REQUEST_STATUSES == {RequestStatus.PENDING}


class TestInstanceLifecycle:
    def test_pending_to_terminal(self):
        for target in (InstanceStatus.APPROVED, InstanceStatus.REJECTED, InstanceStatus.CANCELLED):
            assert can_transition_instance(InstanceStatus.PENDING, target)

    def test_no_way_back_to_pending(self):
        for source in TERMINAL_INSTANCE_STATUSES:
            assert not can_transition_instance(source, InstanceStatus.PENDING)


class TestEntityContext:
    def test_dict_conversion_keeps_admins_ordered(self):
        ctx = EntityContext(
            entity_type="proposal",
            entity_id="P-9",
            project_owner="olivia",
            client="carl",
            assigned_admins=("zed", "amy"),
        )
        data = ctx.to_dict()
        assert data["assigned_admins"] == ["zed", "amy"]
        assert EntityContext.from_dict(data) == ctx

    def test_from_dict_tolerates_missing_optional_fields(self):
        ctx = EntityContext.from_dict({"entity_type": "invoice", "entity_id": "I-1"})
        assert ctx.project_owner is None
        assert ctx.assigned_admins == ()


class TestDTOs:
    def test_actor_admin(self):
        actor = Actor.admin("root")
        assert actor.is_admin
        assert not Actor("alice").is_admin

    def test_request_is_pending(self):
        request = ApprovalRequest(
            request_id=uuid4(),
            instance_id=uuid4(),
            step_order=1,
            approver="alice",
            status=RequestStatus.PENDING,
            created_at=datetime(2024, 1, 1, tzinfo=UTC),
        )
        assert request.is_pending

    def test_instance_is_blocked(self):
        instance = WorkflowInstance(
            instance_id=uuid4(),
            definition_id=uuid4(),
            entity_type=EntityType.PROPOSAL,
            entity_id="P-1",
            status=InstanceStatus.PENDING,
            initiated_by="ivan",
            started_at=datetime(2024, 1, 1, tzinfo=UTC),
            blocked_step=2,
        )
        assert instance.is_blocked
        assert instance.is_pending

    def test_enums_accept_string_values(self):
        assert Topology("any_one") is Topology.ANY_ONE
        assert EntityType("deliverable") is EntityType.DELIVERABLE


class TestDeterministicClock:
    def test_defaults_to_fixed_utc_time(self):
        clock = DeterministicClock()
        assert clock.now() == datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert clock.now() == clock.now()

    def test_advance_hours(self):
        clock = DeterministicClock()
        start = clock.now()
        clock.advance_hours(25)
        assert clock.now() - start == timedelta(hours=25)

    def test_rejects_naive_start(self):
        with pytest.raises(ValueError):
            DeterministicClock(datetime(2024, 1, 1, 12, 0))
