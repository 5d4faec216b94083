"""
approval_engines.timeouts -- Pure timing rules for pending requests.

Responsibility:
    Decide, for one pending request at a given instant, whether its
    auto-approval window has elapsed, whether it is due for escalation, and
    whether a reminder is due.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The current time is always
    passed in; nothing here reads a clock.

Invariants enforced:
    - Auto-approval is measured from request creation.
    - Escalation happens at most once per request (``escalated_at``).
    - A scheduler-wide escalation default never fires before the step's
      own auto-approval window.
    - Reminders repeat every ``reminder_after_hours`` from creation or the
      previous reminder, up to ``max_reminders``.
    - An auto-approval due in the same tick suppresses escalation and
      reminders for that request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from approval_kernel.domain.workflow import ApprovalRequest, RequestStatus


class TimeoutAction(str, Enum):
    AUTO_APPROVE = "auto_approve"
    ESCALATE = "escalate"
    REMIND = "remind"


@dataclass(frozen=True)
class TimingPolicy:
    """Scheduler-wide timing defaults."""

    default_escalate_after_hours: int | None = None
    reminder_after_hours: int | None = None
    max_reminders: int = 0


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def timeout_due(
    request: ApprovalRequest,
    auto_approve_after_hours: int | None,
    now: datetime,
) -> bool:
    """True if the request is pending and its auto-approve window has elapsed."""
    if request.status != RequestStatus.PENDING or auto_approve_after_hours is None:
        return False
    return hours_between(request.created_at, now) >= auto_approve_after_hours


def escalation_window(
    escalate_after_hours: int | None,
    default_escalate_after_hours: int | None,
    auto_approve_after_hours: int | None = None,
) -> int | None:
    """Hours after creation at which a request escalates, or None.

    A step's own setting always wins (the catalog already holds it above
    the step's auto-approve window).  The scheduler-wide default is used
    only when it outlasts that window.
    """
    if escalate_after_hours is not None:
        return escalate_after_hours
    if default_escalate_after_hours is None:
        return None
    if (
        auto_approve_after_hours is not None
        and default_escalate_after_hours <= auto_approve_after_hours
    ):
        return None
    return default_escalate_after_hours


def escalation_due(
    request: ApprovalRequest,
    escalate_after_hours: int | None,
    default_escalate_after_hours: int | None,
    now: datetime,
    auto_approve_after_hours: int | None = None,
) -> bool:
    """True if the request is pending, unescalated and past its escalation window."""
    if request.status != RequestStatus.PENDING or request.escalated_at is not None:
        return False
    window = escalation_window(
        escalate_after_hours, default_escalate_after_hours, auto_approve_after_hours,
    )
    if window is None:
        return False
    return hours_between(request.created_at, now) >= window


def reminder_due(
    request: ApprovalRequest,
    reminder_after_hours: int | None,
    max_reminders: int,
    now: datetime,
) -> bool:
    """True if the request is pending and the next reminder is owed."""
    if request.status != RequestStatus.PENDING:
        return False
    if not reminder_after_hours or request.reminder_count >= max_reminders:
        return False
    anchor = request.reminder_sent_at or request.created_at
    return hours_between(anchor, now) >= reminder_after_hours


def plan_actions(
    request: ApprovalRequest,
    *,
    auto_approve_after_hours: int | None,
    escalate_after_hours: int | None,
    policy: TimingPolicy,
    now: datetime,
) -> tuple[TimeoutAction, ...]:
    """Actions the scheduler should take for one request this tick."""
    if timeout_due(request, auto_approve_after_hours, now):
        return (TimeoutAction.AUTO_APPROVE,)

    actions: list[TimeoutAction] = []
    if escalation_due(
        request,
        escalate_after_hours,
        policy.default_escalate_after_hours,
        now,
        auto_approve_after_hours,
    ):
        actions.append(TimeoutAction.ESCALATE)
    if reminder_due(request, policy.reminder_after_hours, policy.max_reminders, now):
        actions.append(TimeoutAction.REMIND)
    return tuple(actions)
