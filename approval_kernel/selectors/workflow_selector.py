"""
Module: approval_kernel.selectors.workflow_selector
Responsibility: Read-only queries over workflow instances, approval requests
    and history, returned as frozen DTOs.
Architecture position: Kernel > Selectors.

Ordering guarantees:
    - Requests: step order, then creation time.
    - History: occurred_at, then seq.
    - Pending approvals for an approver: oldest first.
    - Active instances: newest first.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from approval_kernel.domain.workflow import (
    ApprovalHistoryEntry,
    ApprovalRequest,
    InstanceStatus,
    RequestStatus,
    WorkflowInstance,
)
from approval_kernel.models.history import ApprovalHistoryModel
from approval_kernel.models.workflow import (
    ApprovalRequestModel,
    WorkflowInstanceModel,
    WorkflowStepModel,
)
from approval_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class PendingRequestView:
    """A pending request with the timing settings of its step."""

    request: ApprovalRequest
    instance: WorkflowInstance
    auto_approve_after_hours: int | None = None
    escalate_after_hours: int | None = None


class WorkflowSelector(BaseSelector):
    """Queries for instances, requests and history."""

    def get_instance(self, instance_id: UUID) -> WorkflowInstance | None:
        model = self.session.get(WorkflowInstanceModel, instance_id)
        return model.to_dto() if model is not None else None

    def get_request(self, request_id: UUID) -> ApprovalRequest | None:
        model = self.session.get(ApprovalRequestModel, request_id)
        return model.to_dto() if model is not None else None

    def requests_for_instance(self, instance_id: UUID) -> list[ApprovalRequest]:
        rows = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.instance_id == instance_id)
            .order_by(ApprovalRequestModel.step_order, ApprovalRequestModel.created_at)
        ).scalars()
        return [r.to_dto() for r in rows]

    def history_for_instance(self, instance_id: UUID) -> list[ApprovalHistoryEntry]:
        rows = self.session.execute(
            select(ApprovalHistoryModel)
            .where(ApprovalHistoryModel.instance_id == instance_id)
            .order_by(ApprovalHistoryModel.occurred_at, ApprovalHistoryModel.seq)
        ).scalars()
        return [r.to_dto() for r in rows]

    def latest_for_entity(self, entity_type: str, entity_id: str) -> WorkflowInstance | None:
        model = self.session.execute(
            select(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.entity_type == entity_type,
                WorkflowInstanceModel.entity_id == entity_id,
            )
            .order_by(WorkflowInstanceModel.started_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def pending_for_approver(self, approver: str) -> list[ApprovalRequest]:
        rows = self.session.execute(
            select(ApprovalRequestModel)
            .join(
                WorkflowInstanceModel,
                WorkflowInstanceModel.id == ApprovalRequestModel.instance_id,
            )
            .where(
                ApprovalRequestModel.approver == approver,
                ApprovalRequestModel.status == RequestStatus.PENDING.value,
                WorkflowInstanceModel.status == InstanceStatus.PENDING.value,
            )
            .order_by(ApprovalRequestModel.created_at)
        ).scalars()
        return [r.to_dto() for r in rows]

    def active_instances(self) -> list[WorkflowInstance]:
        rows = self.session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.status == InstanceStatus.PENDING.value)
            .order_by(WorkflowInstanceModel.started_at.desc())
        ).scalars()
        return [r.to_dto() for r in rows]

    def pending_requests_with_timing(self) -> list[PendingRequestView]:
        """Pending requests on pending instances, oldest first."""
        rows = self.session.execute(
            select(ApprovalRequestModel, WorkflowInstanceModel, WorkflowStepModel)
            .join(
                WorkflowInstanceModel,
                WorkflowInstanceModel.id == ApprovalRequestModel.instance_id,
            )
            .outerjoin(
                WorkflowStepModel,
                WorkflowStepModel.id == ApprovalRequestModel.step_id,
            )
            .where(
                ApprovalRequestModel.status == RequestStatus.PENDING.value,
                WorkflowInstanceModel.status == InstanceStatus.PENDING.value,
            )
            .order_by(ApprovalRequestModel.created_at)
        ).all()
        return [
            PendingRequestView(
                request=request.to_dto(),
                instance=instance.to_dto(),
                auto_approve_after_hours=step.auto_approve_after_hours if step else None,
                escalate_after_hours=step.escalate_after_hours if step else None,
            )
            for request, instance, step in rows
        ]
