import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any

logger = logging.getLogger("WorkQueue.Job")


class JobStatus:
    """Lifecycle statuses of a queued job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    ALL = (PENDING, PROCESSING, COMPLETED, FAILED, CANCELLED)
    TERMINAL = (COMPLETED, FAILED, CANCELLED)


def encode(value: Any) -> Optional[str]:
    """Serialize a payload or result for storage."""
    if value is None:
        return None
    return json.dumps(value)


def decode(value: Optional[str]) -> Any:
    """Deserialize a stored payload or result."""
    if value is None or value == "":
        return None
    return json.loads(value)


@dataclass
class Job:
    """
    A unit of deferred work as seen by producers and workers.
    Payload and result are already deserialized.
    """

    id: int
    job_type: str
    queue_name: str
    priority: int
    status: str
    execute_at: datetime
    created_at: datetime
    payload: Any = None
    attempts: int = 0
    max_attempts: int = 3
    last_error: Optional[str] = None
    result: Any = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, row) -> "Job":
        """Build a Job from a QueueJob row, decoding payload and result."""
        return cls(
            id=row.id,
            job_type=row.job_type,
            queue_name=row.queue_name,
            priority=row.priority,
            status=row.status,
            execute_at=row.execute_at,
            created_at=row.created_at,
            payload=decode(row.payload),
            attempts=row.attempts,
            max_attempts=row.max_attempts,
            last_error=row.last_error,
            result=decode(row.result),
            updated_at=row.updated_at,
            started_at=row.started_at,
            completed_at=row.completed_at,
            failed_at=row.failed_at,
            cancelled_at=row.cancelled_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for key, value in self.__dict__.items():
            data[key] = value.isoformat() if isinstance(value, datetime) else value
        return data


class JobHandler(ABC):
    """
    Base class for job handlers.
    Subclasses set ``job_type`` and implement ``handle``; the registry maps
    the job type string to the handler instance.
    """

    # The job type string this handler executes
    job_type: str = ""

    # Number of seconds the job can run before timing out (None uses the worker's timeout)
    timeout: Optional[int] = None

    @abstractmethod
    async def handle(self, payload: Any) -> Any:
        """
        Execute the job.

        Args:
            payload: Deserialized job payload

        Returns:
            Optional JSON-serializable result stored on the completed job

        Raises:
            JobExecutionError: To fail the job, optionally as non-retryable
        """
        pass

    async def failed(self, job: Job, exception: Exception) -> None:
        """
        Handle a permanent job failure.
        Override this method to perform cleanup once no retries remain.

        Args:
            job: The job as it was dequeued
            exception: The exception that caused the final failure
        """
        logger.error(
            f"Job {job.id} ({self.job_type}) failed permanently: {str(exception)}"
        )

    def __repr__(self):
        return f"<{self.__class__.__name__}(job_type='{self.job_type}')>"
