from .dead_letter import DeadLetterHandler
from .job import FINAL_STATUSES, DeliveryJob, JobKind, JobStatus, idempotency_key
from .queue import DeliveryQueue, JobOutcome, QueueConfig
from .retry import RetryPolicy
from .worker import DeliveryWorkerPool

__all__ = [
    "FINAL_STATUSES",
    "DeadLetterHandler",
    "DeliveryJob",
    "DeliveryQueue",
    "DeliveryWorkerPool",
    "JobKind",
    "JobOutcome",
    "JobStatus",
    "QueueConfig",
    "RetryPolicy",
    "idempotency_key",
]
