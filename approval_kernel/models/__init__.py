"""
SQLAlchemy ORM models for the approval kernel.

Importing this package registers every table on ``Base.metadata`` and
installs the ORM immutability listeners.
"""

from approval_kernel.models.history import ApprovalHistoryModel
from approval_kernel.models.workflow import (
    ApprovalRequestModel,
    WorkflowDefinitionModel,
    WorkflowInstanceModel,
    WorkflowStepModel,
)
from approval_kernel.db.immutability import register_immutability_listeners

register_immutability_listeners()

__all__ = [
    "ApprovalHistoryModel",
    "ApprovalRequestModel",
    "WorkflowDefinitionModel",
    "WorkflowInstanceModel",
    "WorkflowStepModel",
]
