"""Background tasks."""

from taskledger.tasks.worker import process_due_jobs, start_worker, stop_worker

__all__ = ["process_due_jobs", "start_worker", "stop_worker"]
