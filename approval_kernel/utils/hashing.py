"""
Canonical hashing for the approval history chain.

A value must hash identically whether it was just built in memory or read
back from the database, so timestamps are normalised to UTC and UUIDs and
enums reduce to their string forms before hashing.
"""

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _canonical_value(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.astimezone(timezone.utc).isoformat() if obj.tzinfo else obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Cannot canonicalize {type(obj).__name__}")


def canonical_json(data: Any) -> str:
    """Sorted keys, no whitespace, one representation per value."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_canonical_value)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_history_entry(
    *,
    instance_id: UUID | str,
    request_id: UUID | str | None,
    seq: int,
    kind: str,
    actor: str,
    comment: str | None,
    occurred_at: datetime,
    prev_hash: str | None,
) -> str:
    """
    Chain hash for one history entry.

    Covers every recorded field and the previous entry's hash (``GENESIS``
    for an instance's first entry), so editing, removing or reordering an
    entry breaks every hash after it.
    """
    return sha256_hex(canonical_json({
        "instance_id": str(instance_id),
        "request_id": str(request_id) if request_id is not None else None,
        "seq": seq,
        "kind": kind,
        "actor": actor,
        "comment": comment,
        "occurred_at": occurred_at,
        "prev_hash": prev_hash or GENESIS,
    }))
