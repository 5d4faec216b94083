"""Database layer: declarative base, portable types, engines, the store."""

from approval_kernel.db.base import Base, UTCDateTime, UUIDString
from approval_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
)
from approval_kernel.db.store import SqlAlchemyStore, Store

__all__ = [
    "Base",
    "UUIDString",
    "UTCDateTime",
    "build_engine",
    "create_tables",
    "drop_tables",
    "get_session_factory",
    "init_engine_from_url",
    "SqlAlchemyStore",
    "Store",
]
