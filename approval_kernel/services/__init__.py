"""Kernel services: catalog, resolver, engine, history."""

from approval_kernel.services.definition_catalog import WorkflowDefinitionCatalog
from approval_kernel.services.history_recorder import HistoryRecorder
from approval_kernel.services.step_resolver import StepResolver
from approval_kernel.services.workflow_engine import WorkflowInstanceEngine

__all__ = [
    "HistoryRecorder",
    "StepResolver",
    "WorkflowDefinitionCatalog",
    "WorkflowInstanceEngine",
]
