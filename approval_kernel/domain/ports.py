"""
Ports -- pluggable collaborators the engine talks to.

Responsibility:
    Protocols for the directory (role holders), the entity-context source
    (project owner, client, assigned admins) and the notification sink
    (reminders, escalations), plus the in-process defaults used by tests
    and local tooling.

Architecture position:
    Kernel > Domain.  Protocols only; the defaults hold plain data.
    ``LoggingNotifier`` logs through the kernel logger and does no other I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

from approval_kernel.domain.workflow import (
    ApprovalRequest,
    EntityContext,
    WorkflowInstance,
)
from approval_kernel.logging_config import get_logger


class DirectoryProvider(Protocol):
    """Looks up the current holders of a role."""

    def role_holders(self, role: str) -> Sequence[str]:
        """Return the identities holding ``role`` (possibly empty)."""
        ...


class EntityContextProvider(Protocol):
    """Supplies the people attached to an entity."""

    def context_for(self, entity_type: str, entity_id: str) -> EntityContext:
        ...


class Notifier(Protocol):
    """Receives notification obligations; delivery is the caller's concern."""

    def reminder_due(self, request: ApprovalRequest, instance: WorkflowInstance) -> None:
        ...

    def escalation_due(self, request: ApprovalRequest, instance: WorkflowInstance) -> None:
        ...


class StaticDirectory:
    """In-memory ``DirectoryProvider`` backed by a role -> identities map."""

    def __init__(self, roles: Mapping[str, Iterable[str]] | None = None):
        self._roles: dict[str, list[str]] = {
            role: list(holders) for role, holders in (roles or {}).items()
        }

    def role_holders(self, role: str) -> Sequence[str]:
        return tuple(self._roles.get(role, ()))

    def assign(self, role: str, identity: str) -> None:
        holders = self._roles.setdefault(role, [])
        if identity not in holders:
            holders.append(identity)

    def revoke(self, role: str, identity: str) -> None:
        holders = self._roles.get(role, [])
        if identity in holders:
            holders.remove(identity)


class NullContextProvider:
    """Context provider for deployments without project data."""

    def context_for(self, entity_type: str, entity_id: str) -> EntityContext:
        return EntityContext(entity_type=entity_type, entity_id=entity_id)


class StaticContextProvider:
    """In-memory ``EntityContextProvider`` keyed by (entity_type, entity_id)."""

    def __init__(self, contexts: Mapping[tuple[str, str], EntityContext] | None = None):
        self._contexts = dict(contexts or {})

    def put(self, context: EntityContext) -> None:
        self._contexts[(context.entity_type, context.entity_id)] = context

    def context_for(self, entity_type: str, entity_id: str) -> EntityContext:
        return self._contexts.get(
            (entity_type, entity_id),
            EntityContext(entity_type=entity_type, entity_id=entity_id),
        )


class LoggingNotifier:
    """Default ``Notifier``: records each obligation as a structured log line."""

    def __init__(self) -> None:
        self._logger = get_logger("notifier")

    def reminder_due(self, request: ApprovalRequest, instance: WorkflowInstance) -> None:
        self._logger.info(
            "reminder_due",
            extra={
                "request_id": str(request.request_id),
                "instance_id": str(instance.instance_id),
                "approver": request.approver,
                "reminder_count": request.reminder_count,
            },
        )

    def escalation_due(self, request: ApprovalRequest, instance: WorkflowInstance) -> None:
        self._logger.warning(
            "escalation_due",
            extra={
                "request_id": str(request.request_id),
                "instance_id": str(instance.instance_id),
                "approver": request.approver,
                "entity_type": instance.entity_type.value,
                "entity_id": instance.entity_id,
            },
        )
