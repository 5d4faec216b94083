"""
approval_engines.tracer -- APPROVAL_ENGINE_TRACE records for pure engines.

Responsibility:
    ``@traced_engine`` wraps a pure engine function and, after each call,
    logs at DEBUG which engine ran (name and version), a fingerprint of the
    inputs that drove the result, and how long it took.  Two calls with the
    same fingerprint must have produced the same outcome, which is what
    makes a disputed approval reproducible from the logs.

Architecture position:
    Engines -- observational support for the pure calculation layer.
    Never alters arguments or results.

Usage:
    @traced_engine("topology", "1.0", fingerprint_fields=("topology", "decision"))
    def evaluate_decision(*, topology, decision, ...):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import json
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from approval_kernel.logging_config import get_logger

logger = get_logger("engines.tracer")

TRACE_TYPE = "APPROVAL_ENGINE_TRACE"


def _fingerprint_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return str(value)


def compute_input_fingerprint(fields: tuple[str, ...], kwargs: Mapping[str, Any]) -> str:
    """16 hex chars of SHA-256 over the named keyword arguments.

    Absent arguments count as ``null``; enum members hash by value.
    """
    selected = {name: kwargs.get(name) for name in fields}
    canonical = json.dumps(selected, sort_keys=True, default=_fingerprint_default)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.monotonic()
            result = func(*args, **kwargs)
            logger.debug(
                TRACE_TYPE,
                extra={
                    "trace_type": TRACE_TYPE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "function": func.__qualname__,
                    "input_fingerprint": (
                        compute_input_fingerprint(fingerprint_fields, kwargs)
                        if fingerprint_fields
                        else ""
                    ),
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                },
            )
            return result

        return wrapper

    return decorator
