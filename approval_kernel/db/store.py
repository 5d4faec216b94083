"""
Module: approval_kernel.db.store
Responsibility: The ``Store`` seam through which the catalog and the engine
    reach persistent state.  One ``transaction()`` is one atomic unit:
    commit on success, rollback on any error.
Architecture position: Kernel > DB.  May import from db/engine.py and
    exceptions.py only.

Invariants enforced:
    - Atomicity: no partial writes are visible after a failed transaction.
    - Storage failures surface as ``StoreUnavailableError``; domain errors
      raised inside the block propagate unchanged (after rollback).

Failure modes:
    - StoreUnavailableError when the database reports an operational error
      (connection lost, lock timeout, database unavailable).
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, ContextManager, Iterator, Protocol

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.exceptions import StoreUnavailableError
from approval_kernel.logging_config import get_logger

logger = get_logger("db.store")


class Store(Protocol):
    """Transactional access to the approval tables."""

    def transaction(self) -> ContextManager[Session]:
        """Open one atomic unit of work."""
        ...


class SqlAlchemyStore:
    """
    ``Store`` backed by a SQLAlchemy session factory.

    Contract:
        Each ``transaction()`` opens a fresh session, yields it, commits on
        normal exit and rolls back on any exception.  Sessions are never
        shared between transactions or threads.

    Non-goals:
        - Does NOT retry.  Conflict retries belong to the engine, which knows
          how to re-validate preconditions.
    """

    def __init__(self, session_factory: sessionmaker[Session] | Callable[[], Session]):
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except OperationalError as exc:
            session.rollback()
            logger.error("store_transaction_failed", exc_info=True)
            raise StoreUnavailableError(str(exc.orig)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
