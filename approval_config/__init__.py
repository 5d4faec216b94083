"""
approval_config -- single public entrypoint for approval engine settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  No other component reads settings files or
    environment variables directly.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and ``approval_batch``.
    The kernel MUST NEVER import from ``approval_config``; ``bridges``
    translates settings into kernel constructor arguments.

Invariants enforced:
    - Single entrypoint: all runtime settings flow through
      ``get_active_settings()``.
    - Deterministic checksum: the same YAML document always produces the
      same ``WorkflowSettings.checksum``.
    - Environment overrides are applied after parsing and are recorded in
      the trace.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``ValueError`` / ``KeyError`` -- schema failures from the loader.

Audit relevance:
    Every successful call emits an ``approval_config_loaded`` log entry with
    the config_id, version, checksum and applied overrides, tying each run
    of the engine to the settings that governed it.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Mapping
from pathlib import Path

from approval_config.loader import load_settings
from approval_config.schema import WorkflowSettings

_logger = logging.getLogger("approval_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

ENV_CONFIG_PATH = "APPROVAL_CONFIG_PATH"
ENV_DATABASE_URL = "APPROVAL_DATABASE_URL"
ENV_LOG_LEVEL = "APPROVAL_LOG_LEVEL"


def get_active_settings(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> WorkflowSettings:
    """The ONLY public settings entrypoint.

    Resolution order for the file: ``config_path``, then
    ``$APPROVAL_CONFIG_PATH``, then the bundled ``sets/default.yaml``.
    ``$APPROVAL_DATABASE_URL`` and ``$APPROVAL_LOG_LEVEL`` override the
    corresponding file values.

    Args:
        config_path: Explicit settings file.
        environ: Environment mapping; defaults to ``os.environ``.

    Raises:
        FileNotFoundError: If the settings file does not exist.
        ValueError: If the settings fail validation.
    """
    env = os.environ if environ is None else environ
    path = Path(config_path or env.get(ENV_CONFIG_PATH) or _DEFAULT_CONFIG_PATH)

    settings = load_settings(path)

    overrides: list[str] = []
    if env.get(ENV_DATABASE_URL):
        settings = dataclasses.replace(
            settings,
            database=dataclasses.replace(settings.database, url=env[ENV_DATABASE_URL]),
        )
        overrides.append(ENV_DATABASE_URL)
    if env.get(ENV_LOG_LEVEL):
        settings = dataclasses.replace(
            settings,
            logging=dataclasses.replace(settings.logging, level=env[ENV_LOG_LEVEL].upper()),
        )
        overrides.append(ENV_LOG_LEVEL)

    _logger.info(
        "approval_config_loaded",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "source": str(path),
            "overrides": overrides,
            "definition_seed_count": len(settings.definitions),
        },
    )
    return settings


__all__ = [
    "ENV_CONFIG_PATH",
    "ENV_DATABASE_URL",
    "ENV_LOG_LEVEL",
    "WorkflowSettings",
    "get_active_settings",
]
