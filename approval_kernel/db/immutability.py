"""
ORM-Level Immutability Enforcement (append-only history - Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The approval history is the audit guarantee of the whole engine: every
decision, auto-approval, escalation and cancellation must stay exactly as it
was recorded.  This module is the FIRST layer of that guarantee:

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/triggers.py (PostgreSQL triggers)
    - Catches raw SQL and bulk UPDATE/DELETE statements

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | When Immutable              | Why
------------------------|-----------------------------|---------------------------
ApprovalHistoryEntry    | ALWAYS (from creation)      | Audit trail is append-only
WorkflowInstance        | Never deleted               | Retained for audit
ApprovalRequest         | Never deleted; terminal     | Decisions are final
                        | status never changes        |
WorkflowDefinition      | Never deleted               | Soft-deprecated instead

Listeners are registered by ``register_immutability_listeners()``, which the
model package calls on import, so they are always active.
"""

from sqlalchemy import event
from sqlalchemy.orm import Mapper, attributes

from approval_kernel.exceptions import ImmutabilityViolationError

_TERMINAL_REQUEST_STATUSES = frozenset({"approved", "rejected", "expired", "skipped"})

_registered = False


def _check_history_update(mapper: Mapper, connection, target) -> None:
    raise ImmutabilityViolationError(
        entity_type="ApprovalHistoryEntry",
        entity_id=str(target.id),
        reason="History entries are append-only -- cannot modify",
    )


def _check_history_delete(mapper: Mapper, connection, target) -> None:
    raise ImmutabilityViolationError(
        entity_type="ApprovalHistoryEntry",
        entity_id=str(target.id),
        reason="History entries are append-only -- cannot delete",
    )


def _check_request_update(mapper: Mapper, connection, target) -> None:
    """A terminal request keeps its status and decision fields."""
    history = attributes.get_history(target, "status")
    if history.deleted and history.deleted[0] in _TERMINAL_REQUEST_STATUSES:
        raise ImmutabilityViolationError(
            entity_type="ApprovalRequest",
            entity_id=str(target.id),
            reason=f"Request already {history.deleted[0]} -- status is final",
        )


def _forbid_delete(entity_type: str):
    def _listener(mapper: Mapper, connection, target) -> None:
        raise ImmutabilityViolationError(
            entity_type=entity_type,
            entity_id=str(target.id),
            reason=f"{entity_type} rows are retained for audit -- cannot delete",
        )

    return _listener


def register_immutability_listeners() -> None:
    """Register ORM listeners on the approval models (idempotent)."""
    global _registered
    if _registered:
        return

    from approval_kernel.models.history import ApprovalHistoryModel
    from approval_kernel.models.workflow import (
        ApprovalRequestModel,
        WorkflowDefinitionModel,
        WorkflowInstanceModel,
    )

    event.listen(ApprovalHistoryModel, "before_update", _check_history_update)
    event.listen(ApprovalHistoryModel, "before_delete", _check_history_delete)
    event.listen(ApprovalRequestModel, "before_update", _check_request_update)
    event.listen(ApprovalRequestModel, "before_delete", _forbid_delete("ApprovalRequest"))
    event.listen(WorkflowInstanceModel, "before_delete", _forbid_delete("WorkflowInstance"))
    event.listen(WorkflowDefinitionModel, "before_delete", _forbid_delete("WorkflowDefinition"))

    _registered = True
