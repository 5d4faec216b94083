"""
WorkflowDefinitionCatalog -- reusable workflow templates.

Responsibility:
    Creates, validates, lists and maintains workflow definitions and their
    step templates.  Leaf component: depends only on the ``Store``.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
    Owns its transactions through the injected ``Store``.

Invariants enforced:
    - Entity type and topology belong to the closed enumerations.
    - At most one default definition per entity type: making a definition
      the default demotes the previous default in the same transaction.
    - Step orders are positive and leave no gap (a new order is at most
      max + 1).  Sequential definitions cannot repeat an order.
    - Structure is frozen while a pending instance references the
      definition; metadata (name, description, default flag) may change.
    - Definitions are never deleted; ``deprecate`` clears ``is_active``.

Failure modes:
    - InvalidEntityTypeError, InvalidTopologyError, MissingFieldError.
    - DefinitionNotFoundError, DefinitionDeprecatedError, DefinitionInUseError.
    - InvalidStepOrderError, DuplicateStepOrderError, InvalidApproverSpecError.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from approval_kernel.db.store import Store
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    DYNAMIC_SELECTOR_ALIASES,
    ApproverType,
    DynamicSelector,
    EntityType,
    InstanceStatus,
    NewDefinition,
    NewStep,
    Topology,
    WorkflowDefinition,
    WorkflowStepTemplate,
)
from approval_kernel.exceptions import (
    DefinitionDeprecatedError,
    DefinitionInUseError,
    DefinitionNotFoundError,
    DuplicateStepOrderError,
    InvalidApproverSpecError,
    InvalidEntityTypeError,
    InvalidStepOrderError,
    InvalidTopologyError,
    MissingFieldError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.workflow import (
    WorkflowDefinitionModel,
    WorkflowInstanceModel,
    WorkflowStepModel,
)

logger = get_logger("services.definition_catalog")


def coerce_entity_type(value: EntityType | str) -> EntityType:
    try:
        return EntityType(value)
    except ValueError:
        raise InvalidEntityTypeError(str(value)) from None


def coerce_topology(value: Topology | str) -> Topology:
    try:
        return Topology(value)
    except ValueError:
        raise InvalidTopologyError(str(value)) from None


def _validate_hours(label: str, hours: int | None) -> None:
    if hours is None:
        return
    if isinstance(hours, bool) or not isinstance(hours, int) or hours <= 0:
        raise InvalidApproverSpecError(f"{label} must be a positive whole number of hours")


def validate_new_step(step: NewStep) -> ApproverType:
    """Validate everything about a step that does not need the database."""
    if isinstance(step.step_order, bool) or not isinstance(step.step_order, int):
        raise InvalidStepOrderError(step.step_order, "must be an integer")
    if step.step_order < 1:
        raise InvalidStepOrderError(step.step_order, "must be positive")

    try:
        approver_type = ApproverType(step.approver_type)
    except ValueError:
        raise InvalidApproverSpecError(
            f"unknown approver type {step.approver_type!r}"
        ) from None

    value = (step.approver_value or "").strip()
    if not value:
        raise InvalidApproverSpecError("approver value is required")
    if approver_type == ApproverType.DYNAMIC:
        known = {s.value for s in DynamicSelector} | set(DYNAMIC_SELECTOR_ALIASES)
        if value not in known:
            raise InvalidApproverSpecError(
                f"unknown dynamic approver {value!r}; expected one of {sorted(known)}"
            )

    _validate_hours("auto_approve_after_hours", step.auto_approve_after_hours)
    _validate_hours("escalate_after_hours", step.escalate_after_hours)
    if (
        step.auto_approve_after_hours is not None
        and step.escalate_after_hours is not None
        and step.escalate_after_hours <= step.auto_approve_after_hours
    ):
        raise InvalidApproverSpecError(
            "escalate_after_hours must be longer than auto_approve_after_hours"
        )
    return approver_type


class WorkflowDefinitionCatalog:
    """
    Stores and validates reusable workflow templates.

    Contract:
        Every write runs in one ``Store`` transaction; validation happens
        before any mutation.  Reads return frozen DTOs, and ``None`` (or an
        empty list) rather than raising for a missing definition.
    """

    def __init__(self, store: Store, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, definition: NewDefinition) -> WorkflowDefinition:
        """Persist a new definition, demoting any previous default."""
        entity_type = coerce_entity_type(definition.entity_type)
        topology = coerce_topology(definition.topology)
        name = (definition.name or "").strip()
        if not name:
            raise MissingFieldError("name")

        now = self._clock.now()
        with self._store.transaction() as session:
            if definition.is_default:
                self._demote_default(session, entity_type)

            model = WorkflowDefinitionModel(
                id=uuid4(),
                name=name,
                description=definition.description or "",
                entity_type=entity_type.value,
                topology=topology.value,
                is_default=definition.is_default,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            session.add(model)
            session.flush()
            dto = model.to_dto()

        logger.info(
            "workflow_definition_created",
            extra={
                "definition_id": str(dto.definition_id),
                "entity_type": entity_type.value,
                "topology": topology.value,
                "is_default": dto.is_default,
            },
        )
        return dto

    def add_step(self, definition_id: UUID, step: NewStep) -> WorkflowStepTemplate:
        """Append a step template to a definition."""
        approver_type = validate_new_step(step)

        with self._store.transaction() as session:
            definition = session.get(WorkflowDefinitionModel, definition_id)
            if definition is None:
                raise DefinitionNotFoundError(str(definition_id))
            if not definition.is_active:
                raise DefinitionDeprecatedError(str(definition_id))
            if self._has_pending_instances(session, definition_id):
                raise DefinitionInUseError(str(definition_id))

            existing = list(definition.steps)
            max_order = max((s.step_order for s in existing), default=0)
            if step.step_order > max_order + 1:
                raise InvalidStepOrderError(
                    step.step_order,
                    f"would leave a gap after step {max_order}",
                )
            if definition.topology == Topology.SEQUENTIAL.value and any(
                s.step_order == step.step_order for s in existing
            ):
                raise DuplicateStepOrderError(str(definition_id), step.step_order)

            model = WorkflowStepModel(
                id=uuid4(),
                definition_id=definition_id,
                step_order=step.step_order,
                created_seq=len(existing) + 1,
                approver_type=approver_type.value,
                approver_value=step.approver_value.strip(),
                is_optional=step.is_optional,
                auto_approve_after_hours=step.auto_approve_after_hours,
                escalate_after_hours=step.escalate_after_hours,
                created_at=self._clock.now(),
            )
            session.add(model)
            definition.updated_at = self._clock.now()
            session.flush()
            dto = model.to_dto()

        logger.info(
            "workflow_step_added",
            extra={
                "definition_id": str(definition_id),
                "step_order": dto.step_order,
                "approver_type": dto.approver_type.value,
                "is_optional": dto.is_optional,
            },
        )
        return dto

    def update_metadata(
        self,
        definition_id: UUID,
        *,
        name: str | None = None,
        description: str | None = None,
        is_default: bool | None = None,
    ) -> WorkflowDefinition:
        """Change name, description or default flag. Allowed while in use."""
        if name is not None and not name.strip():
            raise MissingFieldError("name")

        with self._store.transaction() as session:
            model = session.get(WorkflowDefinitionModel, definition_id)
            if model is None:
                raise DefinitionNotFoundError(str(definition_id))

            if name is not None:
                model.name = name.strip()
            if description is not None:
                model.description = description
            if is_default is True and not model.is_default:
                if not model.is_active:
                    raise DefinitionDeprecatedError(str(definition_id))
                self._demote_default(session, EntityType(model.entity_type))
                model.is_default = True
            elif is_default is False:
                model.is_default = False

            model.updated_at = self._clock.now()
            session.flush()
            dto = model.to_dto()

        logger.info(
            "workflow_definition_updated",
            extra={"definition_id": str(definition_id), "is_default": dto.is_default},
        )
        return dto

    def deprecate(self, definition_id: UUID) -> WorkflowDefinition:
        """Soft-delete: no new instances may start from this definition.

        Pending instances already running on it are unaffected.
        """
        with self._store.transaction() as session:
            model = session.get(WorkflowDefinitionModel, definition_id)
            if model is None:
                raise DefinitionNotFoundError(str(definition_id))
            model.is_active = False
            model.is_default = False
            model.updated_at = self._clock.now()
            session.flush()
            dto = model.to_dto()

        logger.info("workflow_definition_deprecated", extra={"definition_id": str(definition_id)})
        return dto

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, definition_id: UUID) -> WorkflowDefinition | None:
        with self._store.transaction() as session:
            model = session.get(WorkflowDefinitionModel, definition_id)
            return model.to_dto() if model is not None else None

    def get_steps(self, definition_id: UUID) -> list[WorkflowStepTemplate]:
        with self._store.transaction() as session:
            model = session.get(WorkflowDefinitionModel, definition_id)
            if model is None:
                return []
            return [s.to_dto() for s in model.steps]

    def get_default(self, entity_type: EntityType | str) -> WorkflowDefinition | None:
        """The active default definition for an entity type, if any."""
        et = coerce_entity_type(entity_type)
        with self._store.transaction() as session:
            model = session.execute(
                select(WorkflowDefinitionModel)
                .where(
                    WorkflowDefinitionModel.entity_type == et.value,
                    WorkflowDefinitionModel.is_default.is_(True),
                    WorkflowDefinitionModel.is_active.is_(True),
                )
                .order_by(WorkflowDefinitionModel.updated_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return model.to_dto() if model is not None else None

    def list_by_entity_type(
        self,
        entity_type: EntityType | str,
        include_steps: bool = False,
        include_inactive: bool = False,
    ) -> list[WorkflowDefinition]:
        """Definitions for one entity type, default first, then by name."""
        et = coerce_entity_type(entity_type)
        stmt = select(WorkflowDefinitionModel).where(
            WorkflowDefinitionModel.entity_type == et.value
        )
        return self._list(stmt, include_steps, include_inactive)

    def list_all(
        self,
        include_inactive: bool = False,
        include_steps: bool = False,
    ) -> list[WorkflowDefinition]:
        """Every definition, grouped by entity type, default first."""
        stmt = select(WorkflowDefinitionModel)
        return self._list(stmt, include_steps, include_inactive)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _list(self, stmt, include_steps: bool, include_inactive: bool) -> list[WorkflowDefinition]:
        if not include_inactive:
            stmt = stmt.where(WorkflowDefinitionModel.is_active.is_(True))
        stmt = stmt.order_by(
            WorkflowDefinitionModel.entity_type,
            WorkflowDefinitionModel.is_default.desc(),
            WorkflowDefinitionModel.name,
        )
        with self._store.transaction() as session:
            rows = session.execute(stmt).scalars()
            return [m.to_dto(include_steps=include_steps) for m in rows]

    def _demote_default(self, session: Session, entity_type: EntityType) -> None:
        result = session.execute(
            update(WorkflowDefinitionModel)
            .where(
                WorkflowDefinitionModel.entity_type == entity_type.value,
                WorkflowDefinitionModel.is_default.is_(True),
            )
            .values(is_default=False, updated_at=self._clock.now())
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount:
            logger.info(
                "workflow_default_demoted",
                extra={"entity_type": entity_type.value, "count": result.rowcount},
            )

    @staticmethod
    def _has_pending_instances(session: Session, definition_id: UUID) -> bool:
        count = session.execute(
            select(func.count())
            .select_from(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.definition_id == definition_id,
                WorkflowInstanceModel.status == InstanceStatus.PENDING.value,
            )
        ).scalar_one()
        return count > 0
