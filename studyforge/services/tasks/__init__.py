"""Job queue adapters."""

from studyforge.services.tasks.interface import EnqueueOptions, JobQueue, RetryPolicy

__all__ = ["EnqueueOptions", "JobQueue", "RetryPolicy"]
