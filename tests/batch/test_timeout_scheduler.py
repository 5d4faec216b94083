"""
Tests for TimeoutScheduler.

Tests cover:
- tick: auto-approval, escalation and reminders fed through the engine
- Idempotence across repeated and overlapping ticks
- Per-request failure isolation
- Background thread start/stop
"""

import threading

import pytest

from approval_batch.scheduler import TickReport, TimeoutScheduler
from approval_kernel.domain.workflow import InstanceStatus, NewStep, RequestStatus


@pytest.fixture
def auto_approving(engine, make_definition):
    definition = make_definition(
        "any_one",
        NewStep(1, "user", "alice", auto_approve_after_hours=48),
    )
    return engine.start(definition.definition_id, "proposal", "P-1", "ivan")


@pytest.fixture
def slow(engine, make_definition):
    definition = make_definition("parallel", (1, "user", "bob"), name="slow")
    return engine.start(definition.definition_id, "proposal", "P-2", "ivan")


def test_nothing_due(scheduler, auto_approving):
    report = scheduler.tick()
    assert report == TickReport(examined=1)
    assert report.acted == 0


def test_auto_approval(scheduler, engine, auto_approving, deterministic_clock):
    deterministic_clock.advance_hours(48)

    report = scheduler.tick()

    assert report.auto_approved == 1
    assert engine.get_instance(auto_approving.instance_id).status == InstanceStatus.APPROVED


def test_repeated_ticks_are_idempotent(scheduler, engine, auto_approving, deterministic_clock):
    deterministic_clock.advance_hours(48)
    scheduler.tick()
    history = engine.get_history(auto_approving.instance_id)

    report = scheduler.tick()

    assert report.examined == 0
    assert engine.get_history(auto_approving.instance_id) == history


def test_overlapping_schedulers_act_once(engine, auto_approving, deterministic_clock):
    deterministic_clock.advance_hours(48)
    first = TimeoutScheduler(engine, deterministic_clock)
    second = TimeoutScheduler(engine, deterministic_clock)

    views = engine.list_pending_timing()
    first.tick()
    for view in views:
        assert engine.apply_timeout(view.request.request_id) is None
    assert second.tick().auto_approved == 0


def test_escalation_and_reminder(scheduler, engine, slow, notifier, deterministic_clock):
    deterministic_clock.advance_hours(72)

    report = scheduler.tick()

    assert (report.escalated, report.reminded) == (1, 1)
    request = engine.get_requests(slow.instance_id)[0]
    assert request.status == RequestStatus.PENDING
    assert request.escalated_at is not None
    assert len(notifier.escalations) == 1
    assert len(notifier.reminders) == 1


def test_failure_is_isolated(scheduler, engine, auto_approving, slow, deterministic_clock, monkeypatch, captured_logs):
    deterministic_clock.advance_hours(72)

    def broken(request_id):
        raise RuntimeError("store hiccup")

    monkeypatch.setattr(engine, "apply_timeout", broken)

    report = scheduler.tick()

    assert report.failed == 1
    assert report.escalated == 1
    assert any(r["message"] == "scheduler_request_failed" for r in captured_logs())

    monkeypatch.undo()
    assert scheduler.tick().auto_approved == 1


def test_auto_approval_into_blocked_step_counts_as_done(scheduler, engine, make_definition, deterministic_clock):
    definition = make_definition(
        "sequential",
        NewStep(1, "user", "alice", auto_approve_after_hours=24),
        (2, "role", "empty"),
    )
    instance = engine.start(definition.definition_id, "proposal", "P-3", "ivan")
    deterministic_clock.advance_hours(24)

    report = scheduler.tick()

    assert report.auto_approved == 1
    assert report.failed == 0
    assert engine.get_instance(instance.instance_id).blocked_step == 2


def test_start_and_stop(scheduler, engine, auto_approving, deterministic_clock, monkeypatch):
    deterministic_clock.advance_hours(48)
    applied = threading.Event()
    original = engine.apply_timeout

    def apply_and_signal(request_id):
        try:
            return original(request_id)
        finally:
            applied.set()

    monkeypatch.setattr(engine, "apply_timeout", apply_and_signal)

    scheduler.start()
    try:
        assert scheduler.is_running
        assert applied.wait(timeout=5)
    finally:
        scheduler.stop(timeout=5)

    assert not scheduler.is_running
    assert engine.get_instance(auto_approving.instance_id).status == InstanceStatus.APPROVED


def test_default_escalation_never_precedes_auto_approval(
    scheduler, engine, make_definition, deterministic_clock,
):
    definition = make_definition(
        "any_one",
        NewStep(1, "user", "carol", auto_approve_after_hours=168),
        name="sign-off",
    )
    instance = engine.start(definition.definition_id, "proposal", "P-3", "ivan")
    deterministic_clock.advance_hours(80)

    report = scheduler.tick()

    assert report.escalated == 0
    assert engine.get_requests(instance.instance_id)[0].escalated_at is None
