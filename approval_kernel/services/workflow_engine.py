"""
WorkflowInstanceEngine -- the approval state machine.

Responsibility:
    Starts workflow instances from a definition bound to an entity, applies
    approve/reject decisions, cancellations, timeout auto-approvals,
    escalations and reminders, and resumes instances stalled on an
    unresolvable step.  Topology rules live in the pure
    ``approval_engines.topology`` module; this service owns persistence,
    locking, authorization and history.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and approval_engines.  Receives the store, resolver, clock and ports by
    constructor injection; holds no global state.

Invariants enforced:
    - Atomic transitions: every operation is one ``Store`` transaction that
      reads state, re-checks preconditions, writes state and history.
    - At-most-once terminal transition: the instance row is locked
      (``SELECT ... FOR UPDATE`` where supported) and version-checked;
      every transition bumps the version in ``_claim()`` before any other
      write.  A writer that loses the race is retried and then fails its
      precondition.
    - One pending instance per entity (explicit check plus a partial
      unique index for concurrent starts).
    - Sequential: step N+1 is never created while a non-optional request
      at step N is pending.
    - Every decision, auto-approval, escalation, start and cancellation
      appends exactly one history entry.

Failure modes:
    - Validation: InvalidEntityTypeError, MissingFieldError,
      InvalidDecisionError, InvalidDefinitionError.
    - Definition: DefinitionNotFoundError, EntityTypeMismatchError,
      DefinitionDeprecatedError.
    - State conflict: DuplicateActiveInstanceError, NotPendingError,
      AlreadyTerminalError, NotBlockedError, RequestNotFoundError,
      InstanceNotFoundError.
    - Authorization: UnauthorizedApproverError.
    - Resolution: UnresolvableApproverError (start, no rows written),
      NoApproverForStepError (raised after the approval committed; the
      instance stays pending with ``blocked_step`` set).
    - ConcurrentTransitionError when the conflict retry limit is reached.
    - StoreUnavailableError from the store.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_engines.timeouts import (
    TimingPolicy,
    escalation_due,
    escalation_window,
    reminder_due,
    timeout_due,
)
from approval_engines.topology import (
    evaluate_decision,
    initial_step_orders,
    next_step_order,
    steps_at,
    validate_step_layout,
)
from approval_kernel.db.store import Store
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.ports import (
    EntityContextProvider,
    LoggingNotifier,
    NullContextProvider,
    Notifier,
)
from approval_kernel.domain.workflow import (
    Actor,
    ApprovalHistoryEntry,
    ApprovalRequest,
    Decision,
    EntityContext,
    EntityType,
    EntityWorkflow,
    HistoryEventKind,
    InstanceStatus,
    RequestStatus,
    Topology,
    WorkflowInstance,
    WorkflowStepTemplate,
)
from approval_kernel.exceptions import (
    AlreadyTerminalError,
    ConcurrentTransitionError,
    DefinitionDeprecatedError,
    DefinitionNotFoundError,
    DuplicateActiveInstanceError,
    EntityTypeMismatchError,
    InstanceNotFoundError,
    InvalidDecisionError,
    InvalidEntityTypeError,
    MissingFieldError,
    NoApproverForStepError,
    NotBlockedError,
    NotPendingError,
    RequestNotFoundError,
    UnauthorizedApproverError,
    UnresolvableApproverError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.workflow import (
    ApprovalRequestModel,
    WorkflowDefinitionModel,
    WorkflowInstanceModel,
    WorkflowStepModel,
)
from approval_kernel.selectors.workflow_selector import (
    PendingRequestView,
    WorkflowSelector,
)
from approval_kernel.services.history_recorder import HistoryRecorder
from approval_kernel.services.step_resolver import StepResolver

logger = get_logger("services.workflow_engine")

T = TypeVar("T")


@dataclass(frozen=True)
class _TransitionResult:
    """What a committed transition hands back to the public method."""

    instance: WorkflowInstance
    request: ApprovalRequest | None = None
    blocked_step: int | None = None
    step_completed: bool = False


class WorkflowInstanceEngine:
    """
    Drives workflow instances through their lifecycle.

    Contract:
        Public transition methods return frozen DTOs reflecting the
        committed state.  No-op timeout paths (``apply_timeout``,
        ``escalate``, ``send_reminder``) return ``None``.

    Guarantees:
        - Human decisions and scheduler-driven decisions share
          ``_apply_decision``, so they obey identical topology rules.
        - Notifications are emitted only after the transaction commits.

    Non-goals:
        - Does NOT deliver notifications; it hands obligations to the
          injected ``Notifier``.
        - Does NOT support resubmission; a rejected entity gets a fresh
          ``start()``.
    """

    def __init__(
        self,
        store: Store,
        resolver: StepResolver,
        clock: Clock | None = None,
        context_provider: EntityContextProvider | None = None,
        notifier: Notifier | None = None,
        *,
        system_actor: str = "system",
        max_conflict_retries: int = 3,
        default_escalate_after_hours: int | None = None,
        reminder_after_hours: int | None = None,
        max_reminders: int = 0,
    ):
        self._store = store
        self._resolver = resolver
        self._clock = clock or SystemClock()
        self._context_provider = context_provider or NullContextProvider()
        self._notifier = notifier or LoggingNotifier()
        self._system_actor = Actor.admin(system_actor)
        self._max_conflict_retries = max_conflict_retries
        self._timing = TimingPolicy(
            default_escalate_after_hours=default_escalate_after_hours,
            reminder_after_hours=reminder_after_hours,
            max_reminders=max_reminders,
        )

    @property
    def system_actor(self) -> Actor:
        return self._system_actor

    @property
    def timing_policy(self) -> TimingPolicy:
        return self._timing

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _run(self, operation: str, key: UUID | str, work: Callable[[Session], T]) -> T:
        """Run ``work`` in one transaction, retrying lost version races."""
        attempt = 0
        while True:
            attempt += 1
            try:
                with self._store.transaction() as session:
                    return work(session)
            except StaleDataError:
                if attempt > self._max_conflict_retries:
                    logger.error(
                        "transition_conflict_exhausted",
                        extra={"operation": operation, "key": str(key), "attempts": attempt},
                    )
                    raise ConcurrentTransitionError(str(key), attempt) from None
                logger.info(
                    "transition_conflict_retry",
                    extra={"operation": operation, "key": str(key), "attempt": attempt},
                )

    @staticmethod
    def _lock_instance(session: Session, instance_id: UUID) -> WorkflowInstanceModel | None:
        return session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == instance_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _claim(self, session: Session, instance: WorkflowInstanceModel) -> datetime:
        """Bump the instance version ahead of every other write.

        The version-checked UPDATE is the first statement the transaction
        writes, so a writer that lost the race fails before touching
        requests or history.
        """
        now = self._clock.now()
        instance.touch(now)
        session.flush()
        return now

    @staticmethod
    def _load_requests(session: Session, instance_id: UUID) -> list[ApprovalRequestModel]:
        return list(
            session.execute(
                select(ApprovalRequestModel)
                .where(ApprovalRequestModel.instance_id == instance_id)
                .order_by(ApprovalRequestModel.step_order, ApprovalRequestModel.created_at)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _lock_request(
        self,
        session: Session,
        request_id: UUID,
    ) -> tuple[ApprovalRequestModel, WorkflowInstanceModel, list[ApprovalRequestModel]]:
        """Find a request, lock its instance, then re-read all its requests."""
        request = session.get(ApprovalRequestModel, request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))
        instance = self._lock_instance(session, request.instance_id)
        if instance is None:
            raise InstanceNotFoundError(str(request.instance_id))
        requests = self._load_requests(session, instance.id)
        request = next(r for r in requests if r.id == request_id)
        return request, instance, requests

    @staticmethod
    def _steps_for(session: Session, definition_id: UUID) -> tuple[Topology, list[WorkflowStepTemplate]]:
        definition = session.get(WorkflowDefinitionModel, definition_id)
        if definition is None:
            raise DefinitionNotFoundError(str(definition_id))
        return Topology(definition.topology), [s.to_dto() for s in definition.steps]

    @staticmethod
    def _context_of(instance: WorkflowInstanceModel) -> EntityContext:
        if instance.entity_context:
            return EntityContext.from_dict(instance.entity_context)
        return EntityContext(entity_type=instance.entity_type, entity_id=instance.entity_id)

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def _resolve_order(
        self,
        steps: Sequence[WorkflowStepTemplate],
        context: EntityContext,
    ) -> list[tuple[WorkflowStepTemplate, tuple[str, ...]]]:
        """Resolve every step at one order.

        Optional steps that resolve to nobody are left out; a required step
        that resolves to nobody raises ``UnresolvableApproverError``.
        """
        resolved = []
        for step in steps:
            try:
                resolved.append((step, self._resolver.resolve(step, context)))
            except UnresolvableApproverError:
                if not step.is_optional:
                    raise
                logger.info(
                    "optional_step_passed_over",
                    extra={"step_order": step.step_order, "approver_value": step.approver_value},
                )
        return resolved

    def _create_requests(
        self,
        session: Session,
        instance_id: UUID,
        resolved: list[tuple[WorkflowStepTemplate, tuple[str, ...]]],
    ) -> list[ApprovalRequestModel]:
        now = self._clock.now()
        created = []
        for step, approvers in resolved:
            for approver in approvers:
                model = ApprovalRequestModel(
                    id=uuid4(),
                    instance_id=instance_id,
                    step_id=step.step_id,
                    step_order=step.step_order,
                    approver=approver,
                    is_optional=step.is_optional,
                    status=RequestStatus.PENDING.value,
                    created_at=now,
                    reminder_count=0,
                )
                session.add(model)
                created.append(model)
        return created

    def _activate_from(
        self,
        session: Session,
        instance: WorkflowInstanceModel,
        steps: Sequence[WorkflowStepTemplate],
        order: int | None,
    ) -> int | None:
        """Activate the first order at or after ``order`` that yields requests.

        Returns the blocked order if a required step there has no approver,
        else None.  Running out of orders approves the instance.
        """
        context = self._context_of(instance)
        while order is not None:
            try:
                resolved = self._resolve_order(steps_at(steps, order), context)
            except UnresolvableApproverError:
                instance.current_step = order
                instance.blocked_step = order
                return order
            if resolved:
                self._create_requests(session, instance.id, resolved)
                instance.current_step = order
                instance.blocked_step = None
                return None
            order = next_step_order(steps, order)

        instance.status = InstanceStatus.APPROVED.value
        instance.completed_at = self._clock.now()
        instance.blocked_step = None
        return None

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def start(
        self,
        definition_id: UUID | None,
        entity_type: EntityType | str,
        entity_id: str,
        initiator: str,
        notes: str | None = None,
    ) -> WorkflowInstance:
        """
        Start a workflow for an entity.

        ``definition_id=None`` starts the entity type's default definition.

        Raises:
            DefinitionNotFoundError, EntityTypeMismatchError,
            DefinitionDeprecatedError, InvalidDefinitionError,
            DuplicateActiveInstanceError, UnresolvableApproverError.
        """
        try:
            et = EntityType(entity_type)
        except ValueError:
            raise InvalidEntityTypeError(str(entity_type)) from None
        entity_id = str(entity_id or "").strip()
        if not entity_id:
            raise MissingFieldError("entity_id")
        initiator = (initiator or "").strip()
        if not initiator:
            raise MissingFieldError("initiator")

        def work(session: Session) -> WorkflowInstance:
            definition = self._find_definition(session, definition_id, et)
            if definition.entity_type != et.value:
                raise EntityTypeMismatchError(str(definition.id), definition.entity_type, et.value)
            if not definition.is_active:
                raise DefinitionDeprecatedError(str(definition.id))

            topology = Topology(definition.topology)
            steps = [s.to_dto() for s in definition.steps]
            validate_step_layout(definition.id, topology, steps)

            existing = session.execute(
                select(WorkflowInstanceModel.id).where(
                    WorkflowInstanceModel.entity_type == et.value,
                    WorkflowInstanceModel.entity_id == entity_id,
                    WorkflowInstanceModel.status == InstanceStatus.PENDING.value,
                )
            ).scalar_one_or_none()
            if existing is not None:
                logger.info(
                    "workflow_start_duplicate",
                    extra={"entity_type": et.value, "entity_id": entity_id},
                )
                raise DuplicateActiveInstanceError(et.value, entity_id, str(existing))

            context = self._context_provider.context_for(et.value, entity_id)
            resolved, first_order = self._plan_start(topology, steps, context)

            now = self._clock.now()
            instance = WorkflowInstanceModel(
                id=uuid4(),
                definition_id=definition.id,
                entity_type=et.value,
                entity_id=entity_id,
                status=InstanceStatus.PENDING.value,
                current_step=first_order,
                initiated_by=initiator,
                notes=notes,
                entity_context=context.to_dict(),
                started_at=now,
                last_transition_at=now,
                version=1,
            )
            session.add(instance)
            try:
                session.flush()
            except IntegrityError:
                raise DuplicateActiveInstanceError(et.value, entity_id) from None

            self._create_requests(session, instance.id, resolved)
            HistoryRecorder(session, self._clock).append(
                instance_id=instance.id,
                kind=HistoryEventKind.STARTED,
                actor=initiator,
                comment=notes,
            )
            session.flush()
            return instance.to_dto()

        dto = self._run("start", f"{et.value}:{entity_id}", work)
        logger.info(
            "workflow_started",
            extra={
                "instance_id": str(dto.instance_id),
                "definition_id": str(dto.definition_id),
                "entity_type": et.value,
                "entity_id": entity_id,
                "initiated_by": initiator,
            },
        )
        return dto

    def _find_definition(
        self,
        session: Session,
        definition_id: UUID | None,
        entity_type: EntityType,
    ) -> WorkflowDefinitionModel:
        if definition_id is not None:
            definition = session.get(WorkflowDefinitionModel, definition_id)
            if definition is None:
                raise DefinitionNotFoundError(str(definition_id))
            return definition

        definition = session.execute(
            select(WorkflowDefinitionModel)
            .where(
                WorkflowDefinitionModel.entity_type == entity_type.value,
                WorkflowDefinitionModel.is_default.is_(True),
                WorkflowDefinitionModel.is_active.is_(True),
            )
            .order_by(WorkflowDefinitionModel.updated_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if definition is None:
            raise DefinitionNotFoundError(f"default:{entity_type.value}")
        return definition

    def _plan_start(
        self,
        topology: Topology,
        steps: Sequence[WorkflowStepTemplate],
        context: EntityContext,
    ) -> tuple[list[tuple[WorkflowStepTemplate, tuple[str, ...]]], int]:
        """Resolve the first wave of approvers before anything is written."""
        orders = initial_step_orders(topology, steps)
        if topology == Topology.SEQUENTIAL:
            order: int | None = orders[0]
            while order is not None:
                resolved = self._resolve_order(steps_at(steps, order), context)
                if resolved:
                    return resolved, order
                order = next_step_order(steps, order)
        else:
            resolved = []
            for order in orders:
                resolved.extend(self._resolve_order(steps_at(steps, order), context))
            if resolved:
                return resolved, orders[0]

        # Every step is optional and nobody fills any of them.
        last = steps[-1]
        raise UnresolvableApproverError(last.approver_type.value, last.approver_value)

    # ------------------------------------------------------------------
    # decide
    # ------------------------------------------------------------------

    def decide(
        self,
        request_id: UUID,
        actor: Actor | str,
        decision: Decision | str,
        comment: str | None = None,
    ) -> WorkflowInstance:
        """
        Apply an approve/reject decision from a human approver.

        Raises:
            RequestNotFoundError, NotPendingError, UnauthorizedApproverError,
            NoApproverForStepError (after commit, sequential only).
        """
        if isinstance(actor, str):
            actor = Actor(identity=actor)
        try:
            decision = Decision(decision)
        except ValueError:
            raise InvalidDecisionError(str(decision)) from None

        def work(session: Session) -> _TransitionResult:
            request, instance, requests = self._lock_request(session, request_id)
            if request.status != RequestStatus.PENDING.value:
                logger.info(
                    "decision_not_pending",
                    extra={"request_id": str(request_id), "status": request.status},
                )
                raise NotPendingError(str(request_id), request.status)
            if instance.status != InstanceStatus.PENDING.value:
                logger.info(
                    "decision_not_pending",
                    extra={"request_id": str(request_id), "instance_status": instance.status},
                )
                raise NotPendingError(str(request_id), f"instance {instance.status}")
            if not actor.is_admin and actor.identity != request.approver:
                logger.info(
                    "decision_unauthorized",
                    extra={"request_id": str(request_id), "approver": request.approver},
                )
                raise UnauthorizedApproverError(str(request_id), actor.identity, request.approver)

            kind = (
                HistoryEventKind.APPROVED
                if decision == Decision.APPROVE
                else HistoryEventKind.REJECTED
            )
            return self._apply_decision(
                session, instance, requests, request, decision, actor.identity, comment, kind,
            )

        with LogContext.bind(request_id=str(request_id), actor=actor.identity):
            result = self._run("decide", request_id, work)
            logger.info(
                "decision_recorded",
                extra={
                    "request_id": str(request_id),
                    "instance_id": str(result.instance.instance_id),
                    "decision": decision.value,
                    "instance_status": result.instance.status.value,
                    "step_completed": result.step_completed,
                },
            )
        return self._finish(result)

    def _apply_decision(
        self,
        session: Session,
        instance: WorkflowInstanceModel,
        requests: list[ApprovalRequestModel],
        request: ApprovalRequestModel,
        decision: Decision,
        actor: str,
        comment: str | None,
        kind: HistoryEventKind,
    ) -> _TransitionResult:
        """Shared by human decisions and timeout auto-approvals."""
        now = self._claim(session, instance)
        request.status = (
            RequestStatus.APPROVED.value
            if decision == Decision.APPROVE
            else RequestStatus.REJECTED.value
        )
        request.decided_at = now
        request.decided_by = actor
        request.decision_comment = comment

        topology, steps = self._steps_for(session, instance.definition_id)
        outcome = evaluate_decision(
            topology=topology,
            decision=decision,
            decided_request_id=request.id,
            requests=[r.to_dto() for r in requests],
            steps=steps,
            current_step=instance.current_step,
        )

        skip = set(outcome.skip_request_ids)
        for other in requests:
            if other.id in skip:
                other.status = RequestStatus.SKIPPED.value

        HistoryRecorder(session, self._clock).append(
            instance_id=instance.id,
            kind=kind,
            actor=actor,
            request_id=request.id,
            comment=comment,
        )

        blocked = None
        if outcome.is_terminal:
            instance.status = outcome.instance_status.value
            instance.completed_at = now
            instance.blocked_step = None
        elif outcome.advance_to is not None:
            blocked = self._activate_from(session, instance, steps, outcome.advance_to)
            if instance.status != InstanceStatus.PENDING.value:
                self._skip_pending(requests)

        session.flush()
        return _TransitionResult(
            instance=instance.to_dto(),
            request=request.to_dto(),
            blocked_step=blocked,
            step_completed=outcome.step_completed,
        )

    @staticmethod
    def _skip_pending(requests: list[ApprovalRequestModel]) -> int:
        count = 0
        for r in requests:
            if r.status == RequestStatus.PENDING.value:
                r.status = RequestStatus.SKIPPED.value
                count += 1
        return count

    def _finish(self, result: _TransitionResult) -> WorkflowInstance:
        """Surface a stalled activation after the transition has committed."""
        if result.blocked_step is not None:
            logger.warning(
                "workflow_step_unresolvable",
                extra={
                    "instance_id": str(result.instance.instance_id),
                    "step_order": result.blocked_step,
                },
            )
            raise NoApproverForStepError(str(result.instance.instance_id), result.blocked_step)
        return result.instance

    # ------------------------------------------------------------------
    # cancel
    # ------------------------------------------------------------------

    def cancel(
        self,
        instance_id: UUID,
        cancelled_by: Actor | str,
        reason: str | None = None,
    ) -> WorkflowInstance:
        """
        Administrative override: cancel a pending instance.

        Raises:
            InstanceNotFoundError, AlreadyTerminalError.
        """
        who = cancelled_by.identity if isinstance(cancelled_by, Actor) else cancelled_by
        if not who:
            raise MissingFieldError("cancelled_by")

        def work(session: Session) -> WorkflowInstance:
            instance = self._lock_instance(session, instance_id)
            if instance is None:
                raise InstanceNotFoundError(str(instance_id))
            if instance.status != InstanceStatus.PENDING.value:
                logger.info(
                    "cancel_already_terminal",
                    extra={"instance_id": str(instance_id), "status": instance.status},
                )
                raise AlreadyTerminalError(str(instance_id), instance.status)

            now = self._claim(session, instance)
            skipped = self._skip_pending(self._load_requests(session, instance.id))
            instance.status = InstanceStatus.CANCELLED.value
            instance.completed_at = now
            instance.blocked_step = None
            HistoryRecorder(session, self._clock).append(
                instance_id=instance.id,
                kind=HistoryEventKind.CANCELLED,
                actor=who,
                comment=reason,
            )
            session.flush()
            logger.info(
                "workflow_cancelled",
                extra={"instance_id": str(instance_id), "cancelled_by": who, "skipped": skipped},
            )
            return instance.to_dto()

        with LogContext.bind(instance_id=str(instance_id), actor=who):
            return self._run("cancel", instance_id, work)

    # ------------------------------------------------------------------
    # Scheduler-driven transitions
    # ------------------------------------------------------------------

    def apply_timeout(self, request_id: UUID) -> WorkflowInstance | None:
        """
        Auto-approve a request whose timeout has elapsed.

        Returns None (no-op) if the request or its instance is no longer
        pending, the step has no auto-approve window, or the window has not
        elapsed yet.  Calling it twice has the same effect as once.
        """
        actor = self._system_actor.identity

        def work(session: Session) -> _TransitionResult | None:
            request, instance, requests = self._lock_request(session, request_id)
            if (
                request.status != RequestStatus.PENDING.value
                or instance.status != InstanceStatus.PENDING.value
            ):
                return None
            step = session.get(WorkflowStepModel, request.step_id) if request.step_id else None
            hours = step.auto_approve_after_hours if step is not None else None
            if not timeout_due(request.to_dto(), hours, self._clock.now()):
                return None

            return self._apply_decision(
                session,
                instance,
                requests,
                request,
                Decision.APPROVE,
                actor,
                f"Auto-approved after {hours}h without a decision",
                HistoryEventKind.AUTO_APPROVED,
            )

        with LogContext.bind(request_id=str(request_id), actor=actor):
            result = self._run("apply_timeout", request_id, work)
            if result is None:
                return None
            logger.info(
                "timeout_auto_approved",
                extra={
                    "request_id": str(request_id),
                    "instance_id": str(result.instance.instance_id),
                    "instance_status": result.instance.status.value,
                },
            )
        return self._finish(result)

    def escalate(self, request_id: UUID) -> ApprovalRequest | None:
        """
        Raise visibility on a request pending past its escalation window.

        Records an ``escalated`` history entry and notifies after commit.
        Never changes request or instance status.  Returns None (no-op) if
        the request is not pending, already escalated, or not yet due.
        """
        actor = self._system_actor.identity

        def work(session: Session) -> _TransitionResult | None:
            request, instance, _ = self._lock_request(session, request_id)
            if (
                request.status != RequestStatus.PENDING.value
                or instance.status != InstanceStatus.PENDING.value
            ):
                return None
            step = session.get(WorkflowStepModel, request.step_id) if request.step_id else None
            step_hours = step.escalate_after_hours if step is not None else None
            auto_hours = step.auto_approve_after_hours if step is not None else None
            default_hours = self._timing.default_escalate_after_hours
            now = self._clock.now()
            if not escalation_due(request.to_dto(), step_hours, default_hours, now, auto_hours):
                return None

            window = escalation_window(step_hours, default_hours, auto_hours)
            now = self._claim(session, instance)
            request.escalated_at = now
            HistoryRecorder(session, self._clock).append(
                instance_id=instance.id,
                kind=HistoryEventKind.ESCALATED,
                actor=actor,
                request_id=request.id,
                comment=f"Pending for over {window}h without a decision",
            )
            session.flush()
            return _TransitionResult(instance=instance.to_dto(), request=request.to_dto())

        with LogContext.bind(request_id=str(request_id), actor=actor):
            result = self._run("escalate", request_id, work)
            if result is None:
                return None
            logger.warning(
                "request_escalated",
                extra={
                    "request_id": str(request_id),
                    "instance_id": str(result.instance.instance_id),
                    "approver": result.request.approver,
                },
            )
            self._notify(self._notifier.escalation_due, result)
        return result.request

    def send_reminder(self, request_id: UUID) -> ApprovalRequest | None:
        """
        Record and emit a reminder for a pending request if one is owed.

        Updates ``reminder_sent_at``/``reminder_count`` only; writes no
        history.  Returns None (no-op) when no reminder is due.
        """

        def work(session: Session) -> _TransitionResult | None:
            request, instance, _ = self._lock_request(session, request_id)
            if instance.status != InstanceStatus.PENDING.value:
                return None
            now = self._clock.now()
            if not reminder_due(
                request.to_dto(), self._timing.reminder_after_hours, self._timing.max_reminders, now,
            ):
                return None
            now = self._claim(session, instance)
            request.reminder_sent_at = now
            request.reminder_count = (request.reminder_count or 0) + 1
            session.flush()
            return _TransitionResult(instance=instance.to_dto(), request=request.to_dto())

        with LogContext.bind(request_id=str(request_id)):
            result = self._run("send_reminder", request_id, work)
            if result is None:
                return None
            logger.info(
                "reminder_recorded",
                extra={
                    "request_id": str(request_id),
                    "reminder_count": result.request.reminder_count,
                },
            )
            self._notify(self._notifier.reminder_due, result)
        return result.request

    def _notify(
        self,
        hook: Callable[[ApprovalRequest, WorkflowInstance], None],
        result: _TransitionResult,
    ) -> None:
        # The state change is already committed; a failing notifier must not
        # turn it into an error for the caller.
        try:
            hook(result.request, result.instance)
        except Exception:
            logger.exception(
                "notification_failed",
                extra={"request_id": str(result.request.request_id)},
            )

    # ------------------------------------------------------------------
    # resume
    # ------------------------------------------------------------------

    def resume(self, instance_id: UUID, actor: Actor | str) -> WorkflowInstance:
        """
        Retry activation of a sequential instance stalled on a step whose
        approvers could not be resolved.

        Raises:
            InstanceNotFoundError, AlreadyTerminalError, NotBlockedError,
            NoApproverForStepError (nothing written; still blocked).
        """
        who = actor.identity if isinstance(actor, Actor) else actor

        def work(session: Session) -> WorkflowInstance:
            instance = self._lock_instance(session, instance_id)
            if instance is None:
                raise InstanceNotFoundError(str(instance_id))
            if instance.status != InstanceStatus.PENDING.value:
                raise AlreadyTerminalError(str(instance_id), instance.status)
            if instance.blocked_step is None:
                raise NotBlockedError(str(instance_id))

            _, steps = self._steps_for(session, instance.definition_id)
            self._claim(session, instance)
            blocked = self._activate_from(session, instance, steps, instance.blocked_step)
            if blocked is not None:
                raise NoApproverForStepError(str(instance_id), blocked)
            session.flush()
            return instance.to_dto()

        with LogContext.bind(instance_id=str(instance_id), actor=who):
            dto = self._run("resume", instance_id, work)
            logger.info(
                "workflow_resumed",
                extra={
                    "instance_id": str(instance_id),
                    "current_step": dto.current_step,
                    "instance_status": dto.status.value,
                },
            )
        return dto

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_instance(self, instance_id: UUID) -> WorkflowInstance | None:
        with self._store.transaction() as session:
            return WorkflowSelector(session).get_instance(instance_id)

    def get_request(self, request_id: UUID) -> ApprovalRequest | None:
        with self._store.transaction() as session:
            return WorkflowSelector(session).get_request(request_id)

    def get_requests(self, instance_id: UUID) -> list[ApprovalRequest]:
        with self._store.transaction() as session:
            return WorkflowSelector(session).requests_for_instance(instance_id)

    def get_history(self, instance_id: UUID) -> list[ApprovalHistoryEntry]:
        with self._store.transaction() as session:
            return WorkflowSelector(session).history_for_instance(instance_id)

    def get_entity_workflow(
        self,
        entity_type: EntityType | str,
        entity_id: str,
    ) -> EntityWorkflow | None:
        """The most recent instance for an entity, with requests and history."""
        try:
            et = EntityType(entity_type)
        except ValueError:
            raise InvalidEntityTypeError(str(entity_type)) from None
        with self._store.transaction() as session:
            selector = WorkflowSelector(session)
            instance = selector.latest_for_entity(et.value, str(entity_id))
            if instance is None:
                return None
            return EntityWorkflow(
                instance=instance,
                requests=tuple(selector.requests_for_instance(instance.instance_id)),
                history=tuple(selector.history_for_instance(instance.instance_id)),
            )

    def list_pending_for_approver(self, approver: str) -> list[ApprovalRequest]:
        with self._store.transaction() as session:
            return WorkflowSelector(session).pending_for_approver(approver)

    def list_active(self) -> list[WorkflowInstance]:
        with self._store.transaction() as session:
            return WorkflowSelector(session).active_instances()

    def list_pending_timing(self) -> list[PendingRequestView]:
        """Pending requests with their step timing, for the scheduler sweep."""
        with self._store.transaction() as session:
            return WorkflowSelector(session).pending_requests_with_timing()

    def verify_history(self, instance_id: UUID) -> bool:
        """Verify the instance's history hash chain.

        Raises:
            InstanceNotFoundError, HistoryChainBrokenError.
        """
        with self._store.transaction() as session:
            if session.get(WorkflowInstanceModel, instance_id) is None:
                raise InstanceNotFoundError(str(instance_id))
            return HistoryRecorder(session, self._clock).verify_chain(instance_id)
