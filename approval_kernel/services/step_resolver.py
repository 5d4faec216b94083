"""
StepResolver -- turns an approver specifier into concrete identities.

Responsibility:
    Resolves the approver declared on a step template (a named user, a role,
    or a dynamic selector over the entity) into a non-empty, ordered,
    de-duplicated tuple of approver identities for one instance.

Architecture position:
    Kernel > Services.  No database access: role holders come from the
    injected ``DirectoryProvider``; dynamic selectors read the
    ``EntityContext`` snapshot taken at instance start.

Invariants enforced:
    - Never returns an empty tuple; an approver that resolves to nobody
      raises ``UnresolvableApproverError``.
    - Dynamic selectors resolve against the instance's context snapshot,
      not the definition, so later org changes do not alter the template.

Failure modes:
    - UnresolvableApproverError: empty user value, role with no holder,
      selector with no value in the context, or an unknown selector.
"""

from __future__ import annotations

from collections.abc import Iterable

from approval_kernel.domain.ports import DirectoryProvider
from approval_kernel.domain.workflow import (
    DYNAMIC_SELECTOR_ALIASES,
    ApproverType,
    DynamicSelector,
    EntityContext,
    WorkflowStepTemplate,
)
from approval_kernel.exceptions import UnresolvableApproverError
from approval_kernel.logging_config import get_logger

logger = get_logger("services.step_resolver")


def _dedupe(identities: Iterable[str | None]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for identity in identities:
        if identity and identity.strip():
            seen.setdefault(identity.strip(), None)
    return tuple(seen)


class StepResolver:
    """Resolves step approvers for a specific entity."""

    def __init__(self, directory: DirectoryProvider):
        self._directory = directory

    def resolve(
        self,
        step: WorkflowStepTemplate,
        entity_context: EntityContext,
    ) -> tuple[str, ...]:
        """
        Resolve a step's approver into concrete identities.

        Returns:
            Non-empty tuple of identities, in directory/context order.

        Raises:
            UnresolvableApproverError: If nobody currently fills the role.
        """
        approver_type = ApproverType(step.approver_type)
        value = step.approver_value

        match approver_type:
            case ApproverType.USER:
                identities = _dedupe([value])
            case ApproverType.ROLE:
                identities = _dedupe(self._directory.role_holders(value))
            case ApproverType.DYNAMIC:
                identities = self._resolve_dynamic(value, entity_context)
            case _:
                raise UnresolvableApproverError(str(approver_type), value)

        if not identities:
            logger.warning(
                "approver_unresolvable",
                extra={
                    "approver_type": approver_type.value,
                    "approver_value": value,
                    "step_order": step.step_order,
                    "entity_type": entity_context.entity_type,
                    "entity_id": entity_context.entity_id,
                },
            )
            raise UnresolvableApproverError(approver_type.value, value)
        return identities

    @staticmethod
    def _resolve_dynamic(value: str, context: EntityContext) -> tuple[str, ...]:
        try:
            selector = DynamicSelector(DYNAMIC_SELECTOR_ALIASES.get(value, value))
        except ValueError:
            raise UnresolvableApproverError(ApproverType.DYNAMIC.value, value) from None

        match selector:
            case DynamicSelector.PROJECT_OWNER:
                return _dedupe([context.project_owner])
            case DynamicSelector.CLIENT:
                return _dedupe([context.client])
            case DynamicSelector.ASSIGNED_ADMINS:
                return _dedupe(context.assigned_admins)
            case _:
                raise UnresolvableApproverError(ApproverType.DYNAMIC.value, value)
