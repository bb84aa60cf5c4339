import json
import logging
from datetime import timedelta
from typing import Optional, Any, Dict, List, Sequence, Iterable, Mapping

from core.clock import SystemClock
from core.config import QueueSettings
from core.exceptions import ValidationError, NotFoundError
from core.job import Job, JobStatus, encode
from core.queue.backoff import ExponentialBackoff
from core.queue.queue_driver import QueueDriver

logger = logging.getLogger("WorkQueue.QueueManager")


class QueueManager:
    """
    Queue Manager for enqueueing, claiming and finishing jobs.
    It is the only component that writes job rows; every state transition
    goes through it.
    """

    def __init__(
        self,
        driver: QueueDriver,
        clock=None,
        backoff: Optional[ExponentialBackoff] = None,
        settings: Optional[QueueSettings] = None,
    ):
        """
        Initialize the queue manager.

        Args:
            driver: Job store the manager reads and writes
            clock: Object with a ``now()`` method returning naive UTC datetimes
            backoff: Retry backoff policy (defaults to the configured base and cap)
            settings: Queue settings (defaults to the environment)
        """
        self.driver = driver
        self.clock = clock or SystemClock()
        self.settings = settings or QueueSettings()
        self.backoff = backoff or ExponentialBackoff(
            base=self.settings.backoff_base,
            cap=self.settings.backoff_cap,
        )
        logger.info(f"QueueManager initialized with {self.backoff}")

    def _validate(
        self,
        job_type: str,
        payload: Any,
        priority: Optional[int],
        queue_name: str,
        delay_seconds: Optional[float],
        max_attempts: Optional[int],
    ) -> Dict[str, Any]:
        """Check enqueue arguments and build the row to insert."""
        limits = self.settings

        if not isinstance(job_type, str) or not job_type.strip():
            raise ValidationError("job_type must be a non-empty string")
        if len(job_type) > limits.MAX_NAME_LENGTH:
            raise ValidationError(f"job_type is longer than {limits.MAX_NAME_LENGTH} characters")

        if not isinstance(queue_name, str) or not queue_name.strip():
            raise ValidationError("queue_name must be a non-empty string")
        if len(queue_name) > limits.MAX_NAME_LENGTH:
            raise ValidationError(f"queue_name is longer than {limits.MAX_NAME_LENGTH} characters")

        if priority is None:
            priority = limits.default_priority
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise ValidationError("priority must be an integer")
        if not limits.MIN_PRIORITY <= priority <= limits.MAX_PRIORITY:
            raise ValidationError(
                f"priority must be between {limits.MIN_PRIORITY} and {limits.MAX_PRIORITY}"
            )

        if delay_seconds is not None:
            if isinstance(delay_seconds, bool) or not isinstance(delay_seconds, (int, float)):
                raise ValidationError("delay_seconds must be a number")
            if not 0 <= delay_seconds <= limits.MAX_DELAY_SECONDS:
                raise ValidationError(
                    f"delay_seconds must be between 0 and {limits.MAX_DELAY_SECONDS}"
                )

        if max_attempts is None:
            max_attempts = limits.default_max_attempts
        if isinstance(max_attempts, bool) or not isinstance(max_attempts, int):
            raise ValidationError("max_attempts must be an integer")
        if not 1 <= max_attempts <= limits.MAX_ATTEMPTS_LIMIT:
            raise ValidationError(f"max_attempts must be between 1 and {limits.MAX_ATTEMPTS_LIMIT}")

        try:
            serialized = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"payload is not JSON serializable: {e}") from e

        now = self.clock.now()
        execute_at = now + timedelta(seconds=delay_seconds) if delay_seconds else now

        return {
            "job_type": job_type,
            "queue_name": queue_name,
            "priority": priority,
            "payload": serialized,
            "status": JobStatus.PENDING,
            "execute_at": execute_at,
            "attempts": 0,
            "max_attempts": max_attempts,
            "created_at": now,
            "updated_at": now,
        }

    async def enqueue(
        self,
        job_type: str,
        payload: Any = None,
        priority: Optional[int] = None,
        queue_name: str = "default",
        delay_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> int:
        """
        Add a job to a queue.

        Args:
            job_type: Handler name for the job
            payload: JSON-serializable job data
            priority: Lower runs first (defaults to the configured priority, 5)
            queue_name: Queue to add the job to
            delay_seconds: Seconds before the job becomes eligible
            max_attempts: Failures allowed before the job fails permanently

        Returns:
            The new job id

        Raises:
            ValidationError: If any argument is malformed; nothing is written
        """
        if payload is None:
            payload = {}
        row = self._validate(job_type, payload, priority, queue_name, delay_seconds, max_attempts)
        job_id = (await self.driver.insert([row]))[0]

        logger.info(
            f"Job {job_id} ({job_type}) enqueued to '{queue_name}' "
            f"with priority {row['priority']}, execute at {row['execute_at'].isoformat()}"
        )
        return job_id

    async def enqueue_many(
        self,
        jobs: Iterable[Mapping[str, Any]],
        queue_name: Optional[str] = None,
    ) -> List[int]:
        """
        Add several jobs in one transaction.

        Args:
            jobs: Mappings with the keyword arguments of ``enqueue``
            queue_name: Queue for every job that does not name its own

        Returns:
            The new job ids, in order

        Raises:
            ValidationError: If any job is malformed; none of them is written
        """
        rows = []
        for entry in jobs:
            entry = dict(entry)
            if "job_type" not in entry:
                raise ValidationError("every job needs a job_type")
            rows.append(
                self._validate(
                    entry["job_type"],
                    entry.get("payload") if entry.get("payload") is not None else {},
                    entry.get("priority"),
                    entry.get("queue_name") or queue_name or "default",
                    entry.get("delay_seconds"),
                    entry.get("max_attempts"),
                )
            )

        if not rows:
            return []

        ids = await self.driver.insert(rows)
        logger.info(f"Bulk enqueued {len(ids)} jobs")
        return ids

    async def dequeue(
        self,
        queue_name: Optional[str] = None,
        job_types: Optional[Sequence[str]] = None,
    ) -> Optional[Job]:
        """
        Claim the next eligible job and mark it processing.

        Args:
            queue_name: Only claim from this queue
            job_types: Only claim jobs of these types

        Returns:
            The claimed job, or None if no job is eligible
        """
        job = await self.driver.claim(self.clock.now(), queue_name, job_types or None)

        if job:
            logger.info(
                f"Job {job.id} ({job.job_type}) dequeued from '{job.queue_name}' "
                f"(attempt {job.attempts + 1}/{job.max_attempts})"
            )
        return job

    async def mark_completed(
        self, job_id: int, result: Any = None, attempts: Optional[int] = None
    ) -> bool:
        """
        Mark a processing job as completed.

        Args:
            job_id: Job identifier
            result: Optional JSON-serializable result
            attempts: The job's attempts as returned by dequeue. When given, the
                call only applies to that claim and not to a later re-claim of
                the same job after it was reclaimed as stale.

        Returns:
            False if the job does not exist, is not processing or was re-claimed

        Raises:
            ValidationError: If the result is not JSON serializable
        """
        try:
            serialized = encode(result)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"result is not JSON serializable: {e}") from e

        now = self.clock.now()
        success = await self.driver.transition(
            job_id,
            JobStatus.PROCESSING,
            {
                "status": JobStatus.COMPLETED,
                "result": serialized,
                "completed_at": now,
                "updated_at": now,
            },
            attempts=attempts,
        )

        if success:
            logger.info(f"Job {job_id} completed (has result: {result is not None})")
        else:
            logger.warning(f"Job {job_id} not completed - not found, not processing or re-claimed")
        return success

    async def mark_failed(
        self,
        job_id: int,
        error: str,
        retryable: bool = True,
        attempts: Optional[int] = None,
    ) -> bool:
        """
        Record a failure of a processing job.

        The job goes back to pending with an exponential backoff delay while
        retries remain, otherwise it fails permanently.

        Args:
            job_id: Job identifier
            error: Failure message stored as last_error
            retryable: False fails the job permanently regardless of attempts
            attempts: The job's attempts as returned by dequeue (see mark_completed)

        Returns:
            False if the job does not exist, is not processing or was re-claimed
        """
        job = await self.driver.find(job_id)
        if not job:
            logger.warning(f"Job {job_id} not failed - not found")
            return False
        if job.status != JobStatus.PROCESSING:
            logger.warning(f"Job {job_id} not failed - status is '{job.status}'")
            return False
        if attempts is not None and job.attempts != attempts:
            logger.warning(
                f"Job {job_id} not failed - claimed again since attempt {attempts + 1}"
            )
            return False

        return await self._record_failure(job, str(error), retryable)

    async def _record_failure(self, job: Job, error: str, retryable: bool) -> bool:
        """Apply the retry/backoff state machine to a job loaded as processing."""
        now = self.clock.now()
        attempts = job.attempts + 1

        if retryable and attempts < job.max_attempts:
            delay = self.backoff.delay(attempts)
            execute_at = now + timedelta(seconds=delay)
            values = {
                "status": JobStatus.PENDING,
                "attempts": attempts,
                "last_error": error,
                "execute_at": execute_at,
                "started_at": None,
                "updated_at": now,
            }
        else:
            values = {
                "status": JobStatus.FAILED,
                "attempts": attempts,
                "last_error": error,
                "failed_at": now,
                "updated_at": now,
            }

        # Guarded on the attempts we read, so a concurrent update of the same job loses cleanly
        success = await self.driver.transition(
            job.id, JobStatus.PROCESSING, values, attempts=job.attempts
        )
        if not success:
            logger.warning(f"Job {job.id} changed concurrently, failure not recorded")
            return False

        if values["status"] == JobStatus.PENDING:
            logger.warning(
                f"Job {job.id} failed, retrying (attempt {attempts}/{job.max_attempts}, "
                f"retry at {values['execute_at'].isoformat()}): {error}"
            )
        else:
            logger.error(
                f"Job {job.id} permanently failed after {attempts} attempt(s): {error}"
            )
        return True

    async def cancel_job(self, job_id: int) -> bool:
        """
        Cancel a pending job.

        Returns:
            False if the job does not exist or is not pending
        """
        now = self.clock.now()
        success = await self.driver.transition(
            job_id,
            JobStatus.PENDING,
            {"status": JobStatus.CANCELLED, "cancelled_at": now, "updated_at": now},
        )

        if success:
            logger.info(f"Job {job_id} cancelled")
        else:
            logger.warning(f"Job {job_id} not cancelled - not found or not pending")
        return success

    async def get_job(self, job_id: int) -> Optional[Job]:
        """Get a job by id, or None if absent."""
        return await self.driver.find(job_id)

    async def require_job(self, job_id: int) -> Job:
        """Get a job by id, raising NotFoundError if absent."""
        job = await self.driver.find(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    async def get_queue_stats(self, queue_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Count jobs by status, for one queue or globally.

        Returns:
            Dictionary with status_counts, failed_last_24h and total_jobs
        """
        status_counts = await self.driver.count_by_status(queue_name)
        since = self.clock.now() - timedelta(hours=24)
        failed_last_24h = await self.driver.count_failed_since(since, queue_name)

        return {
            "status_counts": status_counts,
            "failed_last_24h": failed_last_24h,
            "total_jobs": sum(status_counts.values()),
        }

    async def cleanup(self, days_to_keep: int = 7, include_cancelled: bool = False) -> int:
        """
        Delete completed and failed jobs that finished more than ``days_to_keep`` days ago.

        Args:
            days_to_keep: Retention window in days
            include_cancelled: Also delete cancelled jobs older than the window

        Returns:
            Number of deleted jobs
        """
        if isinstance(days_to_keep, bool) or not isinstance(days_to_keep, int) or days_to_keep < 0:
            raise ValidationError("days_to_keep must be a non-negative integer")

        cutoff = self.clock.now() - timedelta(days=days_to_keep)
        statuses = [JobStatus.COMPLETED, JobStatus.FAILED]
        if include_cancelled:
            statuses.append(JobStatus.CANCELLED)

        deleted = await self.driver.purge({status: cutoff for status in statuses})
        logger.info(f"Queue cleanup completed: {deleted} job(s) deleted, {days_to_keep} day(s) kept")
        return deleted

    async def reclaim_stale(self, timeout_seconds: int) -> int:
        """
        Fail jobs stuck in processing for longer than ``timeout_seconds``.

        Each stale job is recorded as a retryable failure, so it is retried
        with backoff or fails permanently once its attempts are used up.

        Returns:
            Number of jobs reclaimed
        """
        if isinstance(timeout_seconds, bool) or not isinstance(timeout_seconds, int) or timeout_seconds <= 0:
            raise ValidationError("timeout_seconds must be a positive integer")

        started_before = self.clock.now() - timedelta(seconds=timeout_seconds)
        reclaimed = 0
        for job in await self.driver.stale(started_before):
            error = f"Processing timed out after {timeout_seconds}s"
            if await self._record_failure(job, error, retryable=True):
                reclaimed += 1

        if reclaimed:
            logger.warning(f"Reclaimed {reclaimed} stale processing job(s)")
        return reclaimed

    async def size(self, queue_name: str = "default") -> int:
        """Get the number of pending jobs in a queue."""
        return await self.driver.size(queue_name)

    async def list_jobs(
        self,
        status: Optional[str] = None,
        queue_name: Optional[str] = None,
        limit: int = 50,
    ) -> List[Job]:
        """List jobs newest first, e.g. ``list_jobs(status="failed")``."""
        if status is not None and status not in JobStatus.ALL:
            raise ValidationError(f"Unknown job status: {status}")
        return await self.driver.list_jobs(status, queue_name, limit)
