"""Background workers."""

from peekstash.application.workers.sync_scheduler_worker import SyncSchedulerWorker

__all__ = ["SyncSchedulerWorker"]
