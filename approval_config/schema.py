"""
Configuration schema (``approval_config.schema``).

Responsibility
--------------
Frozen dataclasses describing the approval engine's runtime settings and
the seed workflow definitions.  Parsed from YAML by
``approval_config.loader``; consumed through ``get_active_settings()``.

Architecture position
---------------------
**Config layer** -- pure data, no I/O, no kernel imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///approvals.db"
    echo: bool = False


@dataclass(frozen=True)
class SchedulerSettings:
    """Timeout sweep cadence and notification windows (hours)."""

    tick_interval_seconds: int = 300
    default_escalate_after_hours: int | None = None
    reminder_after_hours: int | None = None
    max_reminders: int = 0


@dataclass(frozen=True)
class EngineSettings:
    system_actor: str = "system"
    max_conflict_retries: int = 3


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class RoleBindingSeed:
    """Role holders for the in-process static directory."""

    role: str
    holders: tuple[str, ...] = ()


@dataclass(frozen=True)
class StepSeed:
    step_order: int
    approver_type: str
    approver_value: str
    is_optional: bool = False
    auto_approve_after_hours: int | None = None
    escalate_after_hours: int | None = None


@dataclass(frozen=True)
class DefinitionSeed:
    """A workflow definition created by ``seed_definitions`` if missing."""

    name: str
    entity_type: str
    topology: str
    description: str = ""
    is_default: bool = False
    steps: tuple[StepSeed, ...] = ()


@dataclass(frozen=True)
class WorkflowSettings:
    """The complete, validated settings for one deployment."""

    config_id: str
    version: int
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    engine: EngineSettings = field(default_factory=EngineSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    roles: tuple[RoleBindingSeed, ...] = ()
    definitions: tuple[DefinitionSeed, ...] = ()
    checksum: str = ""
