"""Background processing for the approval engine: the timeout scheduler."""

from approval_batch.scheduler import TickReport, TimeoutScheduler

__all__ = ["TickReport", "TimeoutScheduler"]
