"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for workflow definitions, step templates,
    workflow instances and approval requests.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Valid enumerations: CHECK constraints limit entity_type, topology,
      approver_type and status values.
    - One active workflow per entity: partial UNIQUE index on
      (entity_type, entity_id) WHERE status = 'pending'.
    - At-most-once terminal transition: ``WorkflowInstanceModel.version`` is
      a SQLAlchemy version counter.  Every transition calls ``touch()``, so
      two transactions that read the same instance version cannot both
      commit; the loser gets ``StaleDataError``.

Failure modes:
    - IntegrityError on a second pending instance for the same entity.
    - StaleDataError on a concurrent transition of the same instance.
    - ImmutabilityViolationError on DELETE of any row here, or on a status
      change of a terminal request (see db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import (
        ApprovalRequest,
        WorkflowDefinition,
        WorkflowInstance,
        WorkflowStepTemplate,
    )


class WorkflowDefinitionModel(Base):
    """Persistent workflow template.

    Contract:
        Never deleted.  Deprecation clears ``is_active``.  Structure (steps)
        is frozen while a pending instance references the definition; only
        metadata may change.
    """

    __tablename__ = "workflow_definitions"

    __table_args__ = (
        CheckConstraint(
            "entity_type IN ('proposal', 'invoice', 'contract', "
            "'deliverable', 'project')",
            name="ck_workflow_definitions_entity_type",
        ),
        CheckConstraint(
            "topology IN ('sequential', 'parallel', 'any_one')",
            name="ck_workflow_definitions_topology",
        ),
        Index("ix_workflow_definitions_entity_type", "entity_type", "is_default"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    topology: Mapped[str] = mapped_column(String(20), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    steps: Mapped[list["WorkflowStepModel"]] = relationship(
        "WorkflowStepModel",
        back_populates="definition",
        order_by=lambda: [WorkflowStepModel.step_order, WorkflowStepModel.created_seq],
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowDefinition {self.id} {self.name!r} "
            f"{self.entity_type}/{self.topology}>"
        )

    def to_dto(self, include_steps: bool = True) -> WorkflowDefinition:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            EntityType,
            Topology,
            WorkflowDefinition as WorkflowDefinitionDTO,
        )

        return WorkflowDefinitionDTO(
            definition_id=self.id,
            name=self.name,
            description=self.description or "",
            entity_type=EntityType(self.entity_type),
            topology=Topology(self.topology),
            is_default=self.is_default,
            is_active=self.is_active,
            created_at=self.created_at,
            updated_at=self.updated_at,
            steps=tuple(s.to_dto() for s in self.steps) if include_steps else (),
        )


class WorkflowStepModel(Base):
    """Persistent step template.

    ``created_seq`` preserves insertion order among steps that share an
    order in parallel/any_one definitions.
    """

    __tablename__ = "workflow_steps"

    __table_args__ = (
        CheckConstraint("step_order >= 1", name="ck_workflow_steps_order_positive"),
        CheckConstraint(
            "approver_type IN ('user', 'role', 'dynamic')",
            name="ck_workflow_steps_approver_type",
        ),
        Index("ix_workflow_steps_definition_order", "definition_id", "step_order"),
    )

    definition_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_definitions.id"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    created_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    approver_type: Mapped[str] = mapped_column(String(20), nullable=False)
    approver_value: Mapped[str] = mapped_column(String(255), nullable=False)
    is_optional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_approve_after_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    escalate_after_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    definition: Mapped["WorkflowDefinitionModel"] = relationship(
        "WorkflowDefinitionModel",
        back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowStep {self.id} order={self.step_order} "
            f"{self.approver_type}:{self.approver_value}>"
        )

    def to_dto(self) -> WorkflowStepTemplate:
        from approval_kernel.domain.workflow import (
            ApproverType,
            WorkflowStepTemplate as WorkflowStepTemplateDTO,
        )

        return WorkflowStepTemplateDTO(
            step_id=self.id,
            definition_id=self.definition_id,
            step_order=self.step_order,
            approver_type=ApproverType(self.approver_type),
            approver_value=self.approver_value,
            is_optional=self.is_optional,
            auto_approve_after_hours=self.auto_approve_after_hours,
            escalate_after_hours=self.escalate_after_hours,
        )


class WorkflowInstanceModel(Base):
    """Persistent workflow instance.

    Contract:
        Mutated only by the engine's transition paths, each of which calls
        ``touch()`` exactly once.  Never deleted.

    Guarantees:
        - At most one pending instance per (entity_type, entity_id).
        - ``version`` increases by one per committed transition.
    """

    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="ck_workflow_instances_status",
        ),
        Index(
            "uq_workflow_instances_active_entity",
            "entity_type", "entity_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_workflow_instances_entity", "entity_type", "entity_id", "started_at"),
        Index("ix_workflow_instances_status", "status", "started_at"),
    )

    definition_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_definitions.id"),
        nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    initiated_by: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity_context: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    blocked_step: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_transition_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    def touch(self, now: datetime) -> None:
        """Mark a transition: always emits a version-checked UPDATE."""
        self.last_transition_at = now
        self.version = (self.version or 0) + 1

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.id} {self.entity_type}:{self.entity_id} "
            f"status={self.status}>"
        )

    def to_dto(self) -> WorkflowInstance:
        from approval_kernel.domain.workflow import (
            EntityContext,
            EntityType,
            InstanceStatus,
            WorkflowInstance as WorkflowInstanceDTO,
        )

        return WorkflowInstanceDTO(
            instance_id=self.id,
            definition_id=self.definition_id,
            entity_type=EntityType(self.entity_type),
            entity_id=self.entity_id,
            status=InstanceStatus(self.status),
            initiated_by=self.initiated_by,
            started_at=self.started_at,
            current_step=self.current_step,
            notes=self.notes,
            completed_at=self.completed_at,
            last_transition_at=self.last_transition_at,
            blocked_step=self.blocked_step,
            entity_context=(
                EntityContext.from_dict(self.entity_context)
                if self.entity_context
                else None
            ),
        )


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        Terminal statuses (approved, rejected, expired, skipped) cannot be
        changed once set.  Reminder and escalation bookkeeping may still be
        written while the request is pending.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'expired', 'skipped')",
            name="ck_approval_requests_status",
        ),
        Index("ix_approval_requests_instance_step", "instance_id", "step_order"),
        Index("ix_approval_requests_approver_status", "approver", "status"),
        Index("ix_approval_requests_status_created", "status", "created_at"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    step_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_steps.id"),
        nullable=True,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    approver: Mapped[str] = mapped_column(String(255), nullable=False)
    is_optional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    decision_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} step={self.step_order} "
            f"approver={self.approver} status={self.status}>"
        )

    def to_dto(self) -> ApprovalRequest:
        from approval_kernel.domain.workflow import (
            ApprovalRequest as ApprovalRequestDTO,
            RequestStatus,
        )

        return ApprovalRequestDTO(
            request_id=self.id,
            instance_id=self.instance_id,
            step_order=self.step_order,
            approver=self.approver,
            status=RequestStatus(self.status),
            created_at=self.created_at,
            step_id=self.step_id,
            is_optional=self.is_optional,
            decision_comment=self.decision_comment,
            decided_at=self.decided_at,
            decided_by=self.decided_by,
            reminder_sent_at=self.reminder_sent_at,
            reminder_count=self.reminder_count or 0,
            escalated_at=self.escalated_at,
        )
