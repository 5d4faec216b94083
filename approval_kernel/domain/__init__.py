"""Pure domain types: enums, lifecycle tables, DTOs, clock, ports."""

from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.workflow import (
    Actor,
    ApprovalHistoryEntry,
    ApprovalRequest,
    ApproverType,
    Decision,
    DynamicSelector,
    EntityContext,
    EntityType,
    EntityWorkflow,
    HistoryEventKind,
    InstanceStatus,
    NewDefinition,
    NewStep,
    RequestStatus,
    Topology,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStepTemplate,
)

__all__ = [
    "Actor",
    "ApprovalHistoryEntry",
    "ApprovalRequest",
    "ApproverType",
    "Clock",
    "Decision",
    "DeterministicClock",
    "DynamicSelector",
    "EntityContext",
    "EntityType",
    "EntityWorkflow",
    "HistoryEventKind",
    "InstanceStatus",
    "NewDefinition",
    "NewStep",
    "RequestStatus",
    "SystemClock",
    "Topology",
    "WorkflowDefinition",
    "WorkflowInstance",
    "WorkflowStepTemplate",
]
