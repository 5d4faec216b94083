"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into the typed
``approval_config.schema`` dataclasses.  Runtime callers go through
``approval_config.get_active_settings()`` instead of calling this directly.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required seed fields have no silent defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrong value types or ranges  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    DatabaseSettings,
    DefinitionSeed,
    EngineSettings,
    LoggingSettings,
    RoleBindingSeed,
    SchedulerSettings,
    StepSeed,
    WorkflowSettings,
)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed settings document."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _optional_hours(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{key} must be a positive integer, got {value!r}")
    return value


def _non_negative_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{key} must be a non-negative integer, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=str(data.get("url", defaults.url)),
        echo=bool(data.get("echo", defaults.echo)),
    )


def parse_scheduler(data: dict[str, Any]) -> SchedulerSettings:
    defaults = SchedulerSettings()
    interval = data.get("tick_interval_seconds", defaults.tick_interval_seconds)
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
        raise ValueError(f"tick_interval_seconds must be positive, got {interval!r}")
    return SchedulerSettings(
        tick_interval_seconds=interval,
        default_escalate_after_hours=_optional_hours(data, "default_escalate_after_hours"),
        reminder_after_hours=_optional_hours(data, "reminder_after_hours"),
        max_reminders=_non_negative_int(data, "max_reminders", defaults.max_reminders),
    )


def parse_engine(data: dict[str, Any]) -> EngineSettings:
    defaults = EngineSettings()
    system_actor = str(data.get("system_actor", defaults.system_actor)).strip()
    if not system_actor:
        raise ValueError("engine.system_actor must not be empty")
    return EngineSettings(
        system_actor=system_actor,
        max_conflict_retries=_non_negative_int(
            data, "max_conflict_retries", defaults.max_conflict_retries,
        ),
    )


def parse_logging(data: dict[str, Any]) -> LoggingSettings:
    level = str(data.get("level", LoggingSettings().level)).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}, got {level!r}")
    return LoggingSettings(level=level)


def parse_role(data: dict[str, Any]) -> RoleBindingSeed:
    return RoleBindingSeed(
        role=data["role"],
        holders=tuple(data.get("holders") or ()),
    )


def parse_step(data: dict[str, Any]) -> StepSeed:
    return StepSeed(
        step_order=data["step_order"],
        approver_type=data["approver_type"],
        approver_value=data["approver_value"],
        is_optional=bool(data.get("is_optional", False)),
        auto_approve_after_hours=_optional_hours(data, "auto_approve_after_hours"),
        escalate_after_hours=_optional_hours(data, "escalate_after_hours"),
    )


def parse_definition(data: dict[str, Any]) -> DefinitionSeed:
    steps = tuple(parse_step(s) for s in data.get("steps") or ())
    if not steps:
        raise ValueError(f"Seed definition {data.get('name')!r} has no steps")
    return DefinitionSeed(
        name=data["name"],
        entity_type=data["entity_type"],
        topology=data["topology"],
        description=data.get("description") or "",
        is_default=bool(data.get("is_default", False)),
        steps=steps,
    )


def parse_settings(data: dict[str, Any]) -> WorkflowSettings:
    """Parse a settings document into ``WorkflowSettings``."""
    definitions = tuple(parse_definition(d) for d in data.get("definitions") or ())

    defaults_per_type: dict[str, int] = {}
    for seed in definitions:
        if seed.is_default:
            defaults_per_type[seed.entity_type] = defaults_per_type.get(seed.entity_type, 0) + 1
    duplicated = sorted(et for et, n in defaults_per_type.items() if n > 1)
    if duplicated:
        raise ValueError(f"More than one default seed definition for: {duplicated}")

    return WorkflowSettings(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        database=parse_database(data.get("database") or {}),
        scheduler=parse_scheduler(data.get("scheduler") or {}),
        engine=parse_engine(data.get("engine") or {}),
        logging=parse_logging(data.get("logging") or {}),
        roles=tuple(parse_role(r) for r in data.get("roles") or ()),
        definitions=definitions,
        checksum=compute_checksum(data),
    )


def load_settings(path: Path) -> WorkflowSettings:
    """Load and parse one settings file."""
    return parse_settings(load_yaml_file(path))
