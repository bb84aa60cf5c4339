import asyncio
import logging
import os
import signal
import socket
import traceback
from typing import Optional, Sequence

from core.config import QueueSettings
from core.exceptions import JobExecutionError, UnknownJobTypeError, ValidationError
from core.job import Job
from core.queue.backoff import IdleStrategy, ConstantIdle
from core.queue.job_registry import JobRegistry
from core.queue.queue_manager import QueueManager

logger = logging.getLogger("WorkQueue.QueueWorker")


class QueueWorker:
    """
    Queue Worker for processing jobs from queues.
    Claims jobs through the queue manager, runs their handlers and reports
    the outcome back. Handler failures never escape the worker.
    """

    def __init__(
        self,
        manager: QueueManager,
        registry: JobRegistry,
        queue_name: Optional[str] = None,
        job_types: Optional[Sequence[str]] = None,
        max_jobs: Optional[int] = None,
        max_time: Optional[int] = None,
        sleep: Optional[float] = None,
        idle: Optional[IdleStrategy] = None,
        timeout: Optional[float] = None,
        reclaim_after: Optional[int] = None,
        worker_id: Optional[str] = None,
    ):
        """
        Initialize the queue worker.

        Args:
            manager: Queue manager to claim and finish jobs with
            registry: Job type to handler mapping
            queue_name: Name of the queue to process (None processes every queue)
            job_types: Only process these job types
            max_jobs: Maximum number of jobs to process before stopping
            max_time: Maximum time in seconds to run before stopping
            sleep: Seconds to sleep when no job is available (ignored if idle is given)
            idle: Strategy deciding how long to sleep when no job is available
            timeout: Maximum number of seconds a job can run
            reclaim_after: Reclaim jobs stuck in processing for this many seconds
            worker_id: Name used in log lines (defaults to hostname_pid)
        """
        settings = manager.settings if isinstance(manager.settings, QueueSettings) else QueueSettings()

        self.manager = manager
        self.registry = registry
        self.queue_name = queue_name
        self.job_types = list(job_types) if job_types else None
        self.max_jobs = max_jobs
        self.max_time = max_time
        self.idle = idle or ConstantIdle(sleep if sleep is not None else settings.sleep)
        self.timeout = timeout if timeout is not None else settings.timeout
        self.reclaim_after = reclaim_after if reclaim_after is not None else settings.reclaim_after
        self.worker_id = worker_id or f"{socket.gethostname()}_{os.getpid()}"

        self.should_quit = False
        self.paused = False
        self.jobs_processed = 0
        self.start_time = None
        self._last_reclaim = None

    def install_signal_handlers(self) -> None:
        """Stop gracefully on SIGTERM and SIGINT."""
        signal.signal(signal.SIGTERM, self._handle_signal)
        signal.signal(signal.SIGINT, self._handle_signal)

    def _handle_signal(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"[{self.worker_id}] Received signal {signum}, initiating graceful shutdown...")
        self.should_quit = True

    async def work(self) -> None:
        """
        Start processing jobs from the queue.
        This is the main worker loop.
        """
        logger.info(
            f"[{self.worker_id}] Queue worker started for queue '{self.queue_name or '*'}' "
            f"(job types: {self.job_types or 'all'})"
        )

        loop = asyncio.get_running_loop()
        self.start_time = loop.time()

        while not self.should_quit:
            # Check if we've reached max jobs or max time
            if self._should_stop():
                logger.info(f"[{self.worker_id}] Worker stopping due to limits")
                break

            # Check if paused
            if self.paused:
                await asyncio.sleep(self.idle.next_delay())
                continue

            try:
                await self._maybe_reclaim()

                if await self.run_once():
                    self.idle.reset()
                else:
                    delay = self.idle.next_delay()
                    logger.debug(f"[{self.worker_id}] No jobs available, sleeping for {delay}s")
                    await asyncio.sleep(delay)

            except Exception as e:
                logger.error(f"[{self.worker_id}] Error in worker loop: {str(e)}")
                logger.debug(traceback.format_exc())
                await asyncio.sleep(self.idle.next_delay())

        logger.info(f"[{self.worker_id}] Queue worker stopped. Processed {self.jobs_processed} jobs.")

    async def process_batch(self, max_jobs: int = 100) -> int:
        """
        Process at most ``max_jobs`` jobs, stopping early when the queue is empty.

        Returns:
            Number of jobs processed
        """
        logger.info(
            f"[{self.worker_id}] Batch started for queue '{self.queue_name or '*'}' "
            f"(job types: {self.job_types or 'all'}, max jobs: {max_jobs})"
        )

        await self._maybe_reclaim()

        processed = 0
        while processed < max_jobs and not self.should_quit:
            if not await self.run_once():
                break
            processed += 1

        logger.info(f"[{self.worker_id}] Batch finished. Processed {processed} jobs.")
        return processed

    async def run_once(self) -> bool:
        """
        Claim and process a single job.

        Returns:
            True if a job was processed, False if none was available
        """
        job = await self.manager.dequeue(self.queue_name, self.job_types)
        if not job:
            return False

        await self._process_job(job)
        self.jobs_processed += 1
        return True

    async def _process_job(self, job: Job) -> None:
        """
        Run a claimed job's handler and record the outcome.

        Args:
            job: Job in processing status
        """
        logger.info(f"[{self.worker_id}] Processing job {job.id} ({job.job_type}, attempt {job.attempts + 1})")

        loop = asyncio.get_running_loop()
        started = loop.time()
        timeout = self.registry.timeout_for(job.job_type) or self.timeout

        try:
            result = await asyncio.wait_for(
                self.registry.dispatch(job.job_type, job.payload),
                timeout=timeout,
            )

        except UnknownJobTypeError as e:
            logger.error(f"[{self.worker_id}] Job {job.id} failed: {str(e)}")
            await self._fail_job(job, e, retryable=False)
            return

        except asyncio.TimeoutError:
            logger.error(f"[{self.worker_id}] Job {job.id} timed out after {timeout}s")
            await self._fail_job(
                job, JobExecutionError(f"Job timed out after {timeout} seconds"), retryable=True
            )
            return

        except Exception as e:
            logger.error(f"[{self.worker_id}] Job {job.id} failed: {str(e)}")
            logger.debug(traceback.format_exc())
            retryable = e.retryable if isinstance(e, JobExecutionError) else True
            await self._fail_job(job, e, retryable=retryable)
            return

        try:
            completed = await self.manager.mark_completed(job.id, result, attempts=job.attempts)
        except ValidationError as e:
            logger.error(f"[{self.worker_id}] Job {job.id} returned an invalid result: {str(e)}")
            await self._fail_job(job, e, retryable=False)
            return

        if not completed:
            logger.warning(
                f"[{self.worker_id}] Job {job.id} finished but its completion was not recorded "
                f"(reclaimed or changed while processing)"
            )
            return

        duration = (loop.time() - started) * 1000
        logger.info(f"[{self.worker_id}] Job {job.id} completed successfully in {duration:.2f}ms")

    async def _fail_job(self, job: Job, exception: Exception, retryable: bool) -> None:
        """
        Report a failed job and run the handler's failed hook if no retries remain.

        Args:
            job: The job that failed
            exception: The exception that caused the failure
            retryable: Whether the job may be retried
        """
        message = str(exception) or exception.__class__.__name__
        recorded = await self.manager.mark_failed(
            job.id, message, retryable=retryable, attempts=job.attempts
        )

        permanent = not retryable or job.attempts + 1 >= job.max_attempts
        if not recorded or not permanent:
            return

        handler = self.registry.get_handler_instance(job.job_type)
        if handler is None:
            return

        try:
            await handler.failed(job, exception)
        except Exception as e:
            logger.error(f"[{self.worker_id}] Error in failed handler for job {job.id}: {str(e)}")
            logger.debug(traceback.format_exc())

    async def _maybe_reclaim(self) -> None:
        """Run the stale job sweep at most once per reclaim interval."""
        if not self.reclaim_after:
            return

        now = asyncio.get_running_loop().time()
        if self._last_reclaim is not None and now - self._last_reclaim < self.reclaim_after:
            return

        self._last_reclaim = now
        await self.manager.reclaim_stale(self.reclaim_after)

    def _should_stop(self) -> bool:
        """Check if the worker should stop based on limits."""
        # Check max jobs
        if self.max_jobs and self.jobs_processed >= self.max_jobs:
            return True

        # Check max time
        if self.max_time and self.start_time:
            elapsed = asyncio.get_running_loop().time() - self.start_time
            if elapsed >= self.max_time:
                return True

        return False

    def pause(self) -> None:
        """Pause the worker."""
        self.paused = True
        logger.info(f"[{self.worker_id}] Worker paused")

    def resume(self) -> None:
        """Resume the worker."""
        self.paused = False
        logger.info(f"[{self.worker_id}] Worker resumed")

    def stop(self) -> None:
        """Stop the worker gracefully."""
        self.should_quit = True
        logger.info(f"[{self.worker_id}] Worker stop requested")
