"""
Module: approval_kernel.db.triggers
Responsibility: PostgreSQL triggers that make ``approval_history`` append-only
    at the database level (Layer 2 of 2, complementing db/immutability.py).
Architecture position: Kernel > DB.  Uses sqlalchemy for execution only.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on UPDATE/DELETE of a history row, surfaced
      by SQLAlchemy as InternalError/DBAPIError.
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

HISTORY_TRIGGER_NAMES = (
    "trg_approval_history_no_update",
    "trg_approval_history_no_delete",
)

_INSTALL_SQL = (
    """
    CREATE OR REPLACE FUNCTION approval_history_append_only()
    RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION 'approval_history is append-only (% on %)', TG_OP, OLD.id;
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS trg_approval_history_no_update ON approval_history",
    """
    CREATE TRIGGER trg_approval_history_no_update
    BEFORE UPDATE ON approval_history
    FOR EACH ROW EXECUTE FUNCTION approval_history_append_only()
    """,
    "DROP TRIGGER IF EXISTS trg_approval_history_no_delete ON approval_history",
    """
    CREATE TRIGGER trg_approval_history_no_delete
    BEFORE DELETE ON approval_history
    FOR EACH ROW EXECUTE FUNCTION approval_history_append_only()
    """,
)

_UNINSTALL_SQL = (
    "DROP TRIGGER IF EXISTS trg_approval_history_no_update ON approval_history",
    "DROP TRIGGER IF EXISTS trg_approval_history_no_delete ON approval_history",
    "DROP FUNCTION IF EXISTS approval_history_append_only()",
)


def install_history_triggers(engine: Engine) -> None:
    """Install the append-only triggers (idempotent)."""
    with engine.begin() as conn:
        for statement in _INSTALL_SQL:
            conn.execute(text(statement))


def uninstall_history_triggers(engine: Engine) -> None:
    """Remove the append-only triggers. FOR TESTING ONLY."""
    with engine.begin() as conn:
        for statement in _UNINSTALL_SQL:
            conn.execute(text(statement))


def installed_history_triggers(engine: Engine) -> set[str]:
    """Names of the history triggers currently present."""
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                "SELECT tgname FROM pg_trigger "
                "WHERE tgname = ANY(:names) AND NOT tgisinternal"
            ),
            {"names": list(HISTORY_TRIGGER_NAMES)},
        )
        return {row[0] for row in rows}
