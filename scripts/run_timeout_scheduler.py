#!/usr/bin/env python3
"""
Run the timeout scheduler against the configured database.

Usage:
    python scripts/run_timeout_scheduler.py [--config PATH] [--once]

With ``--once`` a single sweep runs and its counts are printed; otherwise
the scheduler ticks every ``scheduler.tick_interval_seconds`` until
interrupted.
"""

import argparse
import signal
import sys
import threading
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_config import get_active_settings
from approval_config.bridges import build_scheduler, build_workflow_engine
from approval_kernel.db.engine import get_session_factory, init_engine_from_url
from approval_kernel.db.store import SqlAlchemyStore
from approval_kernel.logging_config import configure_logging


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Approval timeout scheduler")
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML file")
    parser.add_argument("--once", action="store_true", help="Run one sweep and exit")
    args = parser.parse_args(argv)

    settings = get_active_settings(args.config)
    configure_logging(level=settings.logging.level)
    init_engine_from_url(settings.database.url, echo=settings.database.echo)

    engine = build_workflow_engine(settings, SqlAlchemyStore(get_session_factory()))
    scheduler = build_scheduler(settings, engine)

    if args.once:
        report = scheduler.tick()
        print(
            f"examined={report.examined} auto_approved={report.auto_approved} "
            f"escalated={report.escalated} reminded={report.reminded} failed={report.failed}"
        )
        return 1 if report.failed else 0

    done = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: done.set())
    signal.signal(signal.SIGTERM, lambda *_: done.set())

    scheduler.start()
    print(f"Scheduler running every {settings.scheduler.tick_interval_seconds}s (Ctrl-C to stop)")
    done.wait()
    scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
