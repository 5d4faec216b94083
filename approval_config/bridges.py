"""
Config-to-kernel bridges (``approval_config.bridges``).

Responsibility:
    Translates ``WorkflowSettings`` into the inputs the kernel and batch
    layers take as constructor arguments, and applies definition seeds to a
    catalog.  The kernel never imports configuration; it is handed plain
    values built here.

Invariants enforced:
    - ``seed_definitions`` is idempotent: a seed whose (entity_type, name)
      already exists, active or not, is left untouched.
"""

from __future__ import annotations

from collections.abc import Iterable

from approval_batch.scheduler import TimeoutScheduler
from approval_config.schema import DefinitionSeed, RoleBindingSeed, WorkflowSettings
from approval_kernel.db.store import Store
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.ports import (
    DirectoryProvider,
    EntityContextProvider,
    Notifier,
    StaticDirectory,
)
from approval_kernel.domain.workflow import NewDefinition, NewStep, WorkflowDefinition
from approval_kernel.logging_config import get_logger
from approval_kernel.services.definition_catalog import WorkflowDefinitionCatalog
from approval_kernel.services.step_resolver import StepResolver
from approval_kernel.services.workflow_engine import WorkflowInstanceEngine

logger = get_logger("config.bridges")


def build_directory(roles: Iterable[RoleBindingSeed]) -> StaticDirectory:
    return StaticDirectory({r.role: list(r.holders) for r in roles})


def build_workflow_engine(
    settings: WorkflowSettings,
    store: Store,
    *,
    clock: Clock | None = None,
    directory: DirectoryProvider | None = None,
    context_provider: EntityContextProvider | None = None,
    notifier: Notifier | None = None,
) -> WorkflowInstanceEngine:
    """Wire a ``WorkflowInstanceEngine`` from settings.

    Without an explicit ``directory`` the settings' role bindings back a
    ``StaticDirectory``.
    """
    resolver = StepResolver(directory or build_directory(settings.roles))
    return WorkflowInstanceEngine(
        store,
        resolver,
        clock,
        context_provider,
        notifier,
        system_actor=settings.engine.system_actor,
        max_conflict_retries=settings.engine.max_conflict_retries,
        default_escalate_after_hours=settings.scheduler.default_escalate_after_hours,
        reminder_after_hours=settings.scheduler.reminder_after_hours,
        max_reminders=settings.scheduler.max_reminders,
    )


def build_scheduler(
    settings: WorkflowSettings,
    engine: WorkflowInstanceEngine,
    clock: Clock | None = None,
) -> TimeoutScheduler:
    return TimeoutScheduler(
        engine,
        clock,
        tick_interval_seconds=settings.scheduler.tick_interval_seconds,
    )


def seed_definitions(
    catalog: WorkflowDefinitionCatalog,
    seeds: Iterable[DefinitionSeed],
) -> list[WorkflowDefinition]:
    """Create every seed definition that does not exist yet.

    Returns the definitions created by this call (with their steps).
    """
    existing = {
        (d.entity_type.value, d.name)
        for d in catalog.list_all(include_inactive=True)
    }

    created: list[WorkflowDefinition] = []
    for seed in seeds:
        if (seed.entity_type, seed.name) in existing:
            logger.debug(
                "definition_seed_exists",
                extra={"entity_type": seed.entity_type, "definition_name": seed.name},
            )
            continue

        definition = catalog.create(
            NewDefinition(
                name=seed.name,
                entity_type=seed.entity_type,
                topology=seed.topology,
                description=seed.description,
                is_default=seed.is_default,
            )
        )
        for step in sorted(seed.steps, key=lambda s: s.step_order):
            catalog.add_step(
                definition.definition_id,
                NewStep(
                    step_order=step.step_order,
                    approver_type=step.approver_type,
                    approver_value=step.approver_value,
                    is_optional=step.is_optional,
                    auto_approve_after_hours=step.auto_approve_after_hours,
                    escalate_after_hours=step.escalate_after_hours,
                ),
            )
        existing.add((seed.entity_type, seed.name))
        created.append(catalog.get(definition.definition_id))

    logger.info("definitions_seeded", extra={"created_count": len(created)})
    return created
