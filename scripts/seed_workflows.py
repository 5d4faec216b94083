#!/usr/bin/env python3
"""
Create the tables and seed the workflow definitions named in the settings.

Usage:
    python scripts/seed_workflows.py [--config PATH] [--database-url URL]

Seeding is idempotent: definitions that already exist (matched by entity
type and name) are left alone, so the script can run on every deploy.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_config import get_active_settings
from approval_config.bridges import seed_definitions
from approval_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from approval_kernel.db.store import SqlAlchemyStore
from approval_kernel.logging_config import configure_logging
from approval_kernel.services.definition_catalog import WorkflowDefinitionCatalog


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Seed approval workflow definitions")
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML file")
    parser.add_argument("--database-url", default=None, help="Override the database URL")
    args = parser.parse_args(argv)

    settings = get_active_settings(args.config)
    configure_logging(level=settings.logging.level)

    url = args.database_url or settings.database.url
    init_engine_from_url(url, echo=settings.database.echo)
    create_tables()

    catalog = WorkflowDefinitionCatalog(SqlAlchemyStore(get_session_factory()))
    created = seed_definitions(catalog, settings.definitions)

    print(f"Seeded {len(created)} definition(s) into {url}")
    for definition in created:
        marker = " (default)" if definition.is_default else ""
        print(
            f"  {definition.entity_type.value:<12} {definition.topology.value:<10} "
            f"{definition.name}{marker}  [{len(definition.steps)} step(s)]"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
