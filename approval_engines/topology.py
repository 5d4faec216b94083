"""
approval_engines.topology -- Pure workflow topology rules.

Responsibility:
    Decide, from the current set of requests on an instance, what a single
    decision does to the instance: which requests are skipped, whether the
    instance completes, and (sequential only) which step order activates
    next.  Also validates a definition's step layout before it is started.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types and exceptions.

Invariants enforced:
    - Rejection is terminal for the whole instance regardless of topology.
    - any_one: the first approval completes the instance; every other
      pending request is skipped.
    - parallel: the instance completes once every non-optional request is
      approved.  Optional requests may stay pending.
    - sequential: step N+1 activates only once no non-optional request at
      step N is pending; leftover optional requests of step N are skipped.
    - A group of requests with no non-optional member completes after one
      approval.
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - InvalidDefinitionError from ``validate_step_layout`` for a definition
      with no steps, a gap in its orders, or duplicate sequential orders.
    - ValueError for an unknown topology or decision (unreachable through
      the typed enums).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from uuid import UUID

from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import (
    ApprovalRequest,
    Decision,
    InstanceStatus,
    RequestStatus,
    Topology,
    WorkflowStepTemplate,
)
from approval_kernel.exceptions import InvalidDefinitionError


@dataclass(frozen=True)
class DecisionOutcome:
    """What the engine must write after one decision.

    ``advance_to`` is set only for sequential instances whose current step
    just completed and that have a further step order to activate.
    """

    instance_status: InstanceStatus
    skip_request_ids: tuple[UUID, ...] = ()
    advance_to: int | None = None
    step_completed: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.instance_status != InstanceStatus.PENDING


# =========================================================================
# Step layout
# =========================================================================


def step_orders(steps: Iterable[WorkflowStepTemplate]) -> list[int]:
    """Distinct step orders, ascending."""
    return sorted({s.step_order for s in steps})


def steps_at(steps: Iterable[WorkflowStepTemplate], order: int) -> list[WorkflowStepTemplate]:
    return [s for s in steps if s.step_order == order]


def next_step_order(steps: Iterable[WorkflowStepTemplate], after: int) -> int | None:
    """The smallest step order greater than ``after``, or None."""
    later = [o for o in step_orders(steps) if o > after]
    return later[0] if later else None


def validate_step_layout(
    definition_id: UUID | str,
    topology: Topology,
    steps: Sequence[WorkflowStepTemplate],
) -> None:
    """Check that a definition can be started.

    Orders must be contiguous from 1.  Sequential definitions may not share
    an order between two steps.
    """
    if not steps:
        raise InvalidDefinitionError(str(definition_id), "definition has no steps")

    orders = step_orders(steps)
    if orders != list(range(1, len(orders) + 1)):
        raise InvalidDefinitionError(
            str(definition_id),
            f"step orders must be contiguous from 1, got {orders}",
        )

    if topology == Topology.SEQUENTIAL and len(orders) != len(steps):
        raise InvalidDefinitionError(
            str(definition_id),
            "sequential definitions cannot repeat a step order",
        )


def initial_step_orders(topology: Topology, steps: Sequence[WorkflowStepTemplate]) -> list[int]:
    """Step orders whose requests are created when an instance starts.

    For sequential topology only the first order activates; the engine
    passes over orders whose steps are all optional and unresolvable.
    """
    orders = step_orders(steps)
    match topology:
        case Topology.SEQUENTIAL:
            return orders[:1]
        case Topology.PARALLEL | Topology.ANY_ONE:
            return orders
        case _:
            raise ValueError(f"Unknown topology: {topology!r}")


# =========================================================================
# Decision evaluation
# =========================================================================


def _pending_ids(requests: Iterable[ApprovalRequest], exclude: UUID | None = None) -> tuple[UUID, ...]:
    return tuple(
        r.request_id
        for r in requests
        if r.status == RequestStatus.PENDING and r.request_id != exclude
    )


def group_complete(requests: Sequence[ApprovalRequest]) -> bool:
    """True once a group of requests no longer blocks progress.

    Every non-optional request must be approved.  A group made only of
    optional requests needs one approval.
    """
    required = [r for r in requests if not r.is_optional]
    if required:
        return all(r.status == RequestStatus.APPROVED for r in required)
    return any(r.status == RequestStatus.APPROVED for r in requests)


@traced_engine("topology", "1.0", fingerprint_fields=("topology", "decision", "current_step"))
def evaluate_decision(
    *,
    topology: Topology,
    decision: Decision,
    decided_request_id: UUID,
    requests: Sequence[ApprovalRequest],
    steps: Sequence[WorkflowStepTemplate],
    current_step: int,
) -> DecisionOutcome:
    """Compute the effect of one decision on its instance.

    Args:
        topology: The definition's topology.
        decision: APPROVE or REJECT.
        decided_request_id: The request the decision was made on.
        requests: Every request of the instance, with the decided request
            already carrying its new status.
        steps: The definition's step templates.
        current_step: The instance's current step order.

    Returns:
        DecisionOutcome describing the instance status, the requests to
        skip, and (sequential) the next step order to activate.
    """
    if decision == Decision.REJECT:
        return DecisionOutcome(
            instance_status=InstanceStatus.REJECTED,
            skip_request_ids=_pending_ids(requests, exclude=decided_request_id),
        )
    if decision != Decision.APPROVE:
        raise ValueError(f"Unknown decision: {decision!r}")

    match topology:
        case Topology.ANY_ONE:
            return DecisionOutcome(
                instance_status=InstanceStatus.APPROVED,
                skip_request_ids=_pending_ids(requests, exclude=decided_request_id),
                step_completed=True,
            )
        case Topology.PARALLEL:
            if group_complete(requests):
                return DecisionOutcome(
                    instance_status=InstanceStatus.APPROVED,
                    step_completed=True,
                )
            return DecisionOutcome(instance_status=InstanceStatus.PENDING)
        case Topology.SEQUENTIAL:
            return _evaluate_sequential(requests, steps, current_step)
        case _:
            raise ValueError(f"Unknown topology: {topology!r}")


def _evaluate_sequential(
    requests: Sequence[ApprovalRequest],
    steps: Sequence[WorkflowStepTemplate],
    current_step: int,
) -> DecisionOutcome:
    at_step = [r for r in requests if r.step_order == current_step]
    if not group_complete(at_step):
        return DecisionOutcome(instance_status=InstanceStatus.PENDING)

    leftovers = _pending_ids(at_step)
    following = next_step_order(steps, current_step)
    if following is None:
        return DecisionOutcome(
            instance_status=InstanceStatus.APPROVED,
            skip_request_ids=_pending_ids(requests),
            step_completed=True,
        )
    return DecisionOutcome(
        instance_status=InstanceStatus.PENDING,
        skip_request_ids=leftovers,
        advance_to=following,
        step_completed=True,
    )


def instance_satisfied(topology: Topology, requests: Sequence[ApprovalRequest]) -> bool:
    """Whether the recorded requests justify an ``approved`` instance.

    Used by history verification tooling and property tests.
    """
    match topology:
        case Topology.ANY_ONE:
            return sum(1 for r in requests if r.status == RequestStatus.APPROVED) == 1
        case Topology.PARALLEL:
            return group_complete(requests)
        case Topology.SEQUENTIAL:
            by_order: dict[int, list[ApprovalRequest]] = {}
            for r in requests:
                by_order.setdefault(r.step_order, []).append(r)
            return bool(by_order) and all(group_complete(g) for g in by_order.values())
        case _:
            raise ValueError(f"Unknown topology: {topology!r}")
