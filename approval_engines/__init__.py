"""
Module: approval_engines
Responsibility:
    Pure rule engines for the approval workflow: topology evaluation and
    timeout/escalation/reminder timing.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel.domain types and exceptions.

Invariants enforced:
    - Purity: engines never read a clock; callers pass ``now`` explicitly.
    - Determinism: identical inputs always produce identical outputs.
"""

from approval_engines.timeouts import (
    TimeoutAction,
    TimingPolicy,
    escalation_due,
    plan_actions,
    reminder_due,
    timeout_due,
)
from approval_engines.topology import (
    DecisionOutcome,
    evaluate_decision,
    group_complete,
    initial_step_orders,
    instance_satisfied,
    next_step_order,
    validate_step_layout,
)

__all__ = [
    "DecisionOutcome",
    "TimeoutAction",
    "TimingPolicy",
    "escalation_due",
    "evaluate_decision",
    "group_complete",
    "initial_step_orders",
    "instance_satisfied",
    "next_step_order",
    "plan_actions",
    "reminder_due",
    "timeout_due",
    "validate_step_layout",
]
