from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Dict, Any, List, Sequence

from core.job import Job


class QueueDriver(ABC):
    """
    Abstract base class for job stores.
    The queue manager is the only caller; all writes are keyed on a job id and
    guarded by the job's expected current status.
    """

    @abstractmethod
    async def insert(self, rows: List[Dict[str, Any]]) -> List[int]:
        """
        Insert new job rows in a single transaction.

        Args:
            rows: Column values for each job, payload already serialized

        Returns:
            The assigned job ids, in the order of ``rows``
        """
        pass

    @abstractmethod
    async def claim(
        self,
        now: datetime,
        queue_name: Optional[str] = None,
        job_types: Optional[Sequence[str]] = None,
    ) -> Optional[Job]:
        """
        Atomically claim the next eligible pending job and mark it processing.

        Args:
            now: Current time; only jobs with execute_at <= now are eligible
            queue_name: Only consider this queue
            job_types: Only consider these job types

        Returns:
            The claimed job, or None if no job is eligible
        """
        pass

    @abstractmethod
    async def find(self, job_id: int) -> Optional[Job]:
        """
        Fetch a job by id.

        Args:
            job_id: Job identifier

        Returns:
            The job or None if it does not exist
        """
        pass

    @abstractmethod
    async def transition(
        self,
        job_id: int,
        from_status: str,
        values: Dict[str, Any],
        attempts: Optional[int] = None,
    ) -> bool:
        """
        Update a job only if it is still in ``from_status``.

        Args:
            job_id: Job identifier
            from_status: Status the job must currently have
            values: Column values to write
            attempts: If given, the job's attempts counter must also match

        Returns:
            True if the row was updated
        """
        pass

    @abstractmethod
    async def count_by_status(self, queue_name: Optional[str] = None) -> Dict[str, int]:
        """
        Count jobs grouped by status.

        Args:
            queue_name: Restrict to one queue, or count globally

        Returns:
            Mapping of status to count, statuses without jobs omitted
        """
        pass

    @abstractmethod
    async def count_failed_since(
        self,
        since: datetime,
        queue_name: Optional[str] = None,
    ) -> int:
        """Count jobs that reached failed at or after ``since``."""
        pass

    @abstractmethod
    async def list_jobs(
        self,
        status: Optional[str] = None,
        queue_name: Optional[str] = None,
        limit: int = 50,
    ) -> List[Job]:
        """List jobs newest first, optionally filtered by status and queue."""
        pass

    @abstractmethod
    async def stale(self, started_before: datetime) -> List[Job]:
        """List processing jobs claimed before ``started_before``."""
        pass

    @abstractmethod
    async def purge(self, cutoffs: Dict[str, datetime]) -> int:
        """
        Delete terminal jobs older than a per-status cutoff.

        Args:
            cutoffs: Mapping of terminal status to cutoff; a job in that status is
                deleted when its terminal timestamp is older than the cutoff

        Returns:
            Number of deleted jobs
        """
        pass

    @abstractmethod
    async def size(self, queue_name: str = "default") -> int:
        """
        Get the number of pending jobs in a queue.

        Args:
            queue_name: Queue name

        Returns:
            Number of pending jobs, delayed ones included
        """
        pass
