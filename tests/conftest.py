"""
Pytest fixtures for the approval workflow test suite.

Provides:
- An isolated database per test (in-memory SQLite by default)
- Deterministic clock, static directory and context provider
- Catalog / engine / scheduler wired the way production wires them
- Structured log capture

Environment Variables:
- DATABASE_URL: run the suite against another database (e.g. PostgreSQL).
  Tables are dropped and recreated around every test.
"""

import json
import logging
import os
from io import StringIO

import pytest

from approval_batch.scheduler import TimeoutScheduler
from approval_kernel.db.engine import build_engine, create_tables, drop_tables
from approval_kernel.db.store import SqlAlchemyStore
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.ports import StaticContextProvider, StaticDirectory
from approval_kernel.domain.workflow import EntityContext, NewDefinition, NewStep
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.definition_catalog import WorkflowDefinitionCatalog
from approval_kernel.services.step_resolver import StepResolver
from approval_kernel.services.workflow_engine import WorkflowInstanceEngine
from sqlalchemy.orm import sessionmaker


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.start(...)
            logs = captured_logs()
            assert any(r["message"] == "workflow_started" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", "sqlite://")


@pytest.fixture
def db_engine():
    engine = build_engine(get_database_url())
    drop_tables(engine)
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return SqlAlchemyStore(session_factory)


@pytest.fixture
def session(session_factory):
    """A raw session for assertions and tamper tests."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def directory():
    return StaticDirectory({
        "admin": ["alice", "bob"],
        "finance": ["fiona"],
        "reviewers": ["rita", "sam", "tina"],
        "empty": [],
    })


@pytest.fixture
def context_provider():
    provider = StaticContextProvider()
    provider.put(EntityContext(
        entity_type="proposal",
        entity_id="P-1",
        project_owner="olivia",
        client="carl",
        assigned_admins=("alice", "bob"),
    ))
    return provider


@pytest.fixture
def catalog(store, deterministic_clock):
    return WorkflowDefinitionCatalog(store, deterministic_clock)


class RecordingNotifier:
    """Collects notification obligations instead of delivering them."""

    def __init__(self):
        self.reminders = []
        self.escalations = []

    def reminder_due(self, request, instance):
        self.reminders.append((request, instance))

    def escalation_due(self, request, instance):
        self.escalations.append((request, instance))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(store, directory, deterministic_clock, context_provider, notifier):
    return WorkflowInstanceEngine(
        store,
        StepResolver(directory),
        deterministic_clock,
        context_provider,
        notifier,
        max_conflict_retries=3,
        default_escalate_after_hours=72,
        reminder_after_hours=24,
        max_reminders=2,
    )


@pytest.fixture
def scheduler(engine, deterministic_clock):
    return TimeoutScheduler(engine, deterministic_clock, tick_interval_seconds=0.01)


# =============================================================================
# Definition builders
# =============================================================================


@pytest.fixture
def make_definition(catalog):
    """
    Create a definition with steps in one call.

    Each step is a NewStep or a (step_order, approver_type, approver_value)
    tuple.
    """

    def _make(
        topology,
        *steps,
        entity_type="proposal",
        name=None,
        is_default=False,
    ):
        definition = catalog.create(NewDefinition(
            name=name or f"{topology} workflow",
            entity_type=entity_type,
            topology=topology,
            is_default=is_default,
        ))
        for step in steps:
            if not isinstance(step, NewStep):
                step = NewStep(*step)
            catalog.add_step(definition.definition_id, step)
        return catalog.get(definition.definition_id)

    return _make
