"""Read-only query selectors."""

from approval_kernel.selectors.workflow_selector import PendingRequestView, WorkflowSelector

__all__ = ["PendingRequestView", "WorkflowSelector"]
