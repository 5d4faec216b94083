"""
Tests for the pure timing rules used by the timeout scheduler.
"""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from approval_engines.timeouts import (
    TimeoutAction,
    TimingPolicy,
    escalation_due,
    escalation_window,
    plan_actions,
    reminder_due,
    timeout_due,
)
from approval_kernel.domain.workflow import ApprovalRequest, RequestStatus

T0 = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture
def request_():
    return ApprovalRequest(
        request_id=uuid4(),
        instance_id=uuid4(),
        step_order=1,
        approver="alice",
        status=RequestStatus.PENDING,
        created_at=T0,
    )


def at(hours: float) -> datetime:
    return T0 + timedelta(hours=hours)


class TestTimeoutDue:
    def test_not_due_without_window(self, request_):
        assert not timeout_due(request_, None, at(1000))

    def test_due_exactly_at_window(self, request_):
        assert not timeout_due(request_, 48, at(47.9))
        assert timeout_due(request_, 48, at(48))

    def test_not_due_once_decided(self, request_):
        decided = replace(request_, status=RequestStatus.APPROVED)
        assert not timeout_due(decided, 48, at(100))


class TestEscalation:
    def test_step_window_overrides_default(self):
        assert escalation_window(10, 72) == 10
        assert escalation_window(None, 72) == 72
        assert escalation_window(None, None) is None

    def test_escalates_only_once(self, request_):
        assert escalation_due(request_, None, 72, at(72))
        escalated = replace(request_, escalated_at=at(72))
        assert not escalation_due(escalated, None, 72, at(200))

    def test_default_ignored_when_not_longer_than_auto_approve(self):
        assert escalation_window(None, 72, 168) is None
        assert escalation_window(None, 168, 168) is None
        assert escalation_window(None, 200, 168) == 200
        assert escalation_window(10, 72, 5) == 10

    def test_default_does_not_escalate_before_auto_approval(self, request_):
        assert not escalation_due(request_, None, 72, at(80), 168)
        policy = TimingPolicy(default_escalate_after_hours=72)
        actions = plan_actions(
            request_, auto_approve_after_hours=168, escalate_after_hours=None,
            policy=policy, now=at(80),
        )
        assert actions == ()



class TestReminders:
    def test_first_reminder_from_creation(self, request_):
        assert not reminder_due(request_, 24, 3, at(23))
        assert reminder_due(request_, 24, 3, at(24))

    def test_next_reminder_from_last_reminder(self, request_):
        reminded = replace(request_, reminder_sent_at=at(24), reminder_count=1)
        assert not reminder_due(reminded, 24, 3, at(40))
        assert reminder_due(reminded, 24, 3, at(48))

    def test_reminders_are_capped(self, request_):
        reminded = replace(request_, reminder_sent_at=at(24), reminder_count=3)
        assert not reminder_due(reminded, 24, 3, at(500))

    def test_disabled_without_window(self, request_):
        assert not reminder_due(request_, None, 3, at(500))


class TestPlanActions:
    def test_auto_approval_suppresses_everything_else(self, request_):
        policy = TimingPolicy(default_escalate_after_hours=10, reminder_after_hours=5, max_reminders=3)
        actions = plan_actions(
            request_, auto_approve_after_hours=48, escalate_after_hours=None,
            policy=policy, now=at(100),
        )
        assert actions == (TimeoutAction.AUTO_APPROVE,)

    def test_escalate_and_remind_together(self, request_):
        policy = TimingPolicy(default_escalate_after_hours=72, reminder_after_hours=24, max_reminders=3)
        actions = plan_actions(
            request_, auto_approve_after_hours=None, escalate_after_hours=None,
            policy=policy, now=at(72),
        )
        assert actions == (TimeoutAction.ESCALATE, TimeoutAction.REMIND)

    def test_nothing_due(self, request_):
        actions = plan_actions(
            request_, auto_approve_after_hours=48, escalate_after_hours=None,
            policy=TimingPolicy(), now=at(1),
        )
        assert actions == ()
