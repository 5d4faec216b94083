"""
TimeoutScheduler -- In-process polling sweep for stale approval requests.

Contract:
    Each tick lists pending requests on pending instances, evaluates the
    pure timing rules (``approval_engines.timeouts.plan_actions``) and feeds
    the due ones back into the engine: ``apply_timeout`` for auto-approval,
    ``escalate`` for escalation, ``send_reminder`` for reminders.

Architecture: approval_batch.  Uses approval_engines.timeouts for pure
    evaluation and the WorkflowInstanceEngine for every state change, so
    scheduler-driven transitions go through the same transactional path
    as human decisions.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Idempotent: every engine call is a no-op on an already-handled
      request, so duplicate or overlapping ticks are harmless.
    - One request's failure is logged and retried next tick; it never
      aborts the tick or the loop.
    - Graceful shutdown: the stop signal is checked between requests.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from approval_engines.timeouts import TimeoutAction, plan_actions
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import NoApproverForStepError
from approval_kernel.logging_config import get_logger
from approval_kernel.services.workflow_engine import WorkflowInstanceEngine

logger = get_logger("batch.scheduler")


@dataclass(frozen=True)
class TickReport:
    """Outcome counts for one scheduler tick."""

    examined: int = 0
    auto_approved: int = 0
    escalated: int = 0
    reminded: int = 0
    failed: int = 0

    @property
    def acted(self) -> int:
        return self.auto_approved + self.escalated + self.reminded


class TimeoutScheduler:
    """Polling scheduler for request timeouts, escalations and reminders.

    Contract:
        - ``tick()`` sweeps once and returns a ``TickReport``.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election); several
          schedulers on one store are safe but redundant.
    """

    def __init__(
        self,
        engine: WorkflowInstanceEngine,
        clock: Clock | None = None,
        tick_interval_seconds: float = 60,
    ):
        self._engine = engine
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> TickReport:
        """Sweep pending requests once (public for testing)."""
        try:
            views = self._engine.list_pending_timing()
        except Exception:
            logger.exception("scheduler_tick_failed")
            return TickReport(failed=1)

        now = self._clock.now()
        policy = self._engine.timing_policy
        counts = {action: 0 for action in TimeoutAction}
        failed = 0
        examined = 0

        for view in views:
            if self._stop_event.is_set():
                break
            examined += 1

            actions = plan_actions(
                view.request,
                auto_approve_after_hours=view.auto_approve_after_hours,
                escalate_after_hours=view.escalate_after_hours,
                policy=policy,
                now=now,
            )
            for action in actions:
                try:
                    if self._apply(action, view.request.request_id):
                        counts[action] += 1
                except Exception:
                    failed += 1
                    logger.exception(
                        "scheduler_request_failed",
                        extra={
                            "request_id": str(view.request.request_id),
                            "action": action.value,
                        },
                    )

        report = TickReport(
            examined=examined,
            auto_approved=counts[TimeoutAction.AUTO_APPROVE],
            escalated=counts[TimeoutAction.ESCALATE],
            reminded=counts[TimeoutAction.REMIND],
            failed=failed,
        )
        logger.info(
            "scheduler_tick_completed",
            extra={
                "examined": report.examined,
                "auto_approved": report.auto_approved,
                "escalated": report.escalated,
                "reminded": report.reminded,
                "failed": report.failed,
            },
        )
        return report

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="approval-timeout-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current tick to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _apply(self, action: TimeoutAction, request_id) -> bool:
        """Run one engine call; True if it changed anything."""
        match action:
            case TimeoutAction.AUTO_APPROVE:
                try:
                    return self._engine.apply_timeout(request_id) is not None
                except NoApproverForStepError:
                    # The auto-approval committed; the next step needs an operator.
                    return True
            case TimeoutAction.ESCALATE:
                return self._engine.escalate(request_id) is not None
            case TimeoutAction.REMIND:
                return self._engine.send_reminder(request_id) is not None
            case _:
                raise ValueError(f"Unknown timeout action: {action!r}")
