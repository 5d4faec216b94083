"""
Approval workflow domain types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the approval workflow engine.  Defines the closed
enumerations (entity types, topologies, statuses, history kinds), the
request and instance lifecycle state machines, and the frozen DTOs that
services hand back to callers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Request lifecycle -- ``REQUEST_TRANSITIONS`` defines the only valid
  request status changes.  Every status but ``pending`` is terminal.
* Instance lifecycle -- ``INSTANCE_TRANSITIONS``; ``pending`` is the only
  non-terminal instance status.
* Topology is a closed enum; consumers ``match`` on it exhaustively.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =========================================================================
# Enumerations
# =========================================================================


class EntityType(str, Enum):
    """Business entities that can be put through an approval workflow."""

    PROPOSAL = "proposal"
    INVOICE = "invoice"
    CONTRACT = "contract"
    DELIVERABLE = "deliverable"
    PROJECT = "project"


class Topology(str, Enum):
    """How the steps of a workflow activate and combine."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    ANY_ONE = "any_one"


class ApproverType(str, Enum):
    """Kinds of approver specifier on a step template."""

    USER = "user"
    ROLE = "role"
    DYNAMIC = "dynamic"


class DynamicSelector(str, Enum):
    """Selectors evaluated against the entity context at instance start."""

    PROJECT_OWNER = "project_owner"
    CLIENT = "client"
    ASSIGNED_ADMINS = "assigned_admins"


# Older definitions name the client approver "owner".
DYNAMIC_SELECTOR_ALIASES: dict[str, DynamicSelector] = {
    "owner": DynamicSelector.CLIENT,
}


class InstanceStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    SKIPPED = "skipped"


class HistoryEventKind(str, Enum):
    """Kinds of entry in the append-only approval history."""

    STARTED = "started"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"


class Decision(str, Enum):
    """Decisions an approver can submit."""

    APPROVE = "approve"
    REJECT = "reject"


# =========================================================================
# Lifecycle state machines
# =========================================================================


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.EXPIRED,
        RequestStatus.SKIPPED,
    }),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
    RequestStatus.SKIPPED: frozenset(),
}

INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.PENDING: frozenset({
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.APPROVED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
}

TERMINAL_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset(
    status for status, targets in REQUEST_TRANSITIONS.items() if not targets
)

TERMINAL_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset(
    status for status, targets in INSTANCE_TRANSITIONS.items() if not targets
)


def can_transition_request(current: RequestStatus, target: RequestStatus) -> bool:
    return target in REQUEST_TRANSITIONS[current]


def can_transition_instance(current: InstanceStatus, target: InstanceStatus) -> bool:
    return target in INSTANCE_TRANSITIONS[current]


# =========================================================================
# Definitions and steps
# =========================================================================


@dataclass(frozen=True)
class WorkflowStepTemplate:
    """One step of a workflow definition.

    For ``sequential`` definitions ``step_order`` drives activation; for
    ``parallel`` and ``any_one`` it is informational.
    """

    step_id: UUID
    definition_id: UUID
    step_order: int
    approver_type: ApproverType
    approver_value: str
    is_optional: bool = False
    auto_approve_after_hours: int | None = None
    escalate_after_hours: int | None = None


@dataclass(frozen=True)
class WorkflowDefinition:
    """A reusable workflow template bound to one entity type."""

    definition_id: UUID
    name: str
    entity_type: EntityType
    topology: Topology
    description: str = ""
    is_default: bool = False
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
    steps: tuple[WorkflowStepTemplate, ...] = ()


@dataclass(frozen=True)
class NewDefinition:
    """Input for ``WorkflowDefinitionCatalog.create``.

    ``entity_type`` and ``topology`` accept the enum or its string value;
    the catalog validates both.
    """

    name: str
    entity_type: EntityType | str
    topology: Topology | str
    description: str = ""
    is_default: bool = False


@dataclass(frozen=True)
class NewStep:
    """Input for ``WorkflowDefinitionCatalog.add_step``."""

    step_order: int
    approver_type: ApproverType | str
    approver_value: str
    is_optional: bool = False
    auto_approve_after_hours: int | None = None
    escalate_after_hours: int | None = None


# =========================================================================
# Entity context and actors
# =========================================================================


@dataclass(frozen=True)
class EntityContext:
    """Snapshot of the people attached to an entity at instance start.

    Dynamic approver selectors resolve against this snapshot, so later
    org changes do not alter an in-flight instance.
    """

    entity_type: str
    entity_id: str
    project_owner: str | None = None
    client: str | None = None
    assigned_admins: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "project_owner": self.project_owner,
            "client": self.client,
            "assigned_admins": list(self.assigned_admins),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityContext:
        return cls(
            entity_type=data["entity_type"],
            entity_id=data["entity_id"],
            project_owner=data.get("project_owner"),
            client=data.get("client"),
            assigned_admins=tuple(data.get("assigned_admins") or ()),
        )


@dataclass(frozen=True)
class Actor:
    """Who is acting on a request or instance.

    Administrators bypass the assigned-approver check in ``decide``.
    """

    identity: str
    is_admin: bool = False

    @classmethod
    def admin(cls, identity: str) -> Actor:
        return cls(identity=identity, is_admin=True)


# =========================================================================
# Instances, requests, history
# =========================================================================


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of one approver's unit of work."""

    request_id: UUID
    instance_id: UUID
    step_order: int
    approver: str
    status: RequestStatus
    created_at: datetime
    step_id: UUID | None = None
    is_optional: bool = False
    decision_comment: str | None = None
    decided_at: datetime | None = None
    decided_by: str | None = None
    reminder_sent_at: datetime | None = None
    reminder_count: int = 0
    escalated_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING


@dataclass(frozen=True)
class WorkflowInstance:
    """Immutable snapshot of one workflow execution."""

    instance_id: UUID
    definition_id: UUID
    entity_type: EntityType
    entity_id: str
    status: InstanceStatus
    initiated_by: str
    started_at: datetime
    current_step: int = 1
    notes: str | None = None
    completed_at: datetime | None = None
    last_transition_at: datetime | None = None
    blocked_step: int | None = None
    entity_context: EntityContext | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == InstanceStatus.PENDING

    @property
    def is_blocked(self) -> bool:
        return self.blocked_step is not None


@dataclass(frozen=True)
class ApprovalHistoryEntry:
    """One append-only history row, hash-chained per instance."""

    entry_id: UUID
    instance_id: UUID
    seq: int
    kind: HistoryEventKind
    actor: str
    occurred_at: datetime
    hash: str
    request_id: UUID | None = None
    comment: str | None = None
    prev_hash: str | None = None


@dataclass(frozen=True)
class EntityWorkflow:
    """An instance together with its requests and history."""

    instance: WorkflowInstance
    requests: tuple[ApprovalRequest, ...] = field(default_factory=tuple)
    history: tuple[ApprovalHistoryEntry, ...] = field(default_factory=tuple)
