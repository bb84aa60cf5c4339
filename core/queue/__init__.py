"""
Job queue for workqueue - durable background jobs with priorities, delays and retries.
"""

from core.queue.queue_manager import QueueManager
from core.queue.queue_worker import QueueWorker
from core.queue.queue_driver import QueueDriver
from core.queue.database_queue import DatabaseQueue
from core.queue.job_registry import JobRegistry
from core.queue.backoff import ExponentialBackoff, IdleStrategy, ConstantIdle, ExponentialIdle

__all__ = [
    "QueueManager",
    "QueueWorker",
    "QueueDriver",
    "DatabaseQueue",
    "JobRegistry",
    "ExponentialBackoff",
    "IdleStrategy",
    "ConstantIdle",
    "ExponentialIdle",
]
