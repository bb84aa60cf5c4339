import asyncio
import os
import socket
import time
import unittest

from core.exceptions import JobExecutionError
from core.job import JobHandler, JobStatus
from core.queue.backoff import ConstantIdle
from core.queue.job_registry import JobRegistry
from core.queue.queue_worker import QueueWorker
from tests.support import QueueTestCase


class RecordingHandler(JobHandler):
    """Fails every time and remembers permanent failures."""

    job_type = "flaky"

    def __init__(self, error=None):
        self.error = error or RuntimeError("upstream unavailable")
        self.failures = []

    async def handle(self, payload):
        raise self.error

    async def failed(self, job, exception):
        self.failures.append((job.id, exception))


class TestQueueWorker(QueueTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.registry = JobRegistry()
        self.worker = QueueWorker(self.manager, self.registry, idle=ConstantIdle(0), timeout=5)

    async def test_successful_job_is_completed_with_result(self):
        self.registry.register("add", lambda payload: {"sum": payload["a"] + payload["b"]})
        job_id = await self.manager.enqueue("add", {"a": 2, "b": 3})

        self.assertTrue(await self.worker.run_once())

        job = await self.manager.get_job(job_id)
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertEqual(job.result, {"sum": 5})
        self.assertEqual(self.worker.jobs_processed, 1)

    async def test_run_once_on_empty_queue(self):
        self.assertFalse(await self.worker.run_once())

    async def test_handler_exception_schedules_retry(self):
        """Test that a handler error is turned into a retryable failure."""
        handler = RecordingHandler()
        self.registry.register("flaky", handler)
        job_id = await self.manager.enqueue("flaky", {})

        await self.worker.run_once()

        job = await self.manager.get_job(job_id)
        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual(job.attempts, 1)
        self.assertEqual(job.last_error, "upstream unavailable")
        self.assertEqual(handler.failures, [])

    async def test_failed_hook_runs_once_retries_are_exhausted(self):
        handler = RecordingHandler()
        self.registry.register("flaky", handler)
        job_id = await self.manager.enqueue("flaky", {}, max_attempts=2)

        await self.worker.run_once()
        self.clock.current = (await self.manager.get_job(job_id)).execute_at
        await self.worker.run_once()

        job = await self.manager.get_job(job_id)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.attempts, 2)
        self.assertEqual(len(handler.failures), 1)
        self.assertEqual(handler.failures[0][0], job_id)

    async def test_non_retryable_execution_error(self):
        handler = RecordingHandler(JobExecutionError("invalid recipient", retryable=False))
        self.registry.register("flaky", handler)
        job_id = await self.manager.enqueue("flaky", {})

        await self.worker.run_once()

        job = await self.manager.get_job(job_id)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.attempts, 1)
        self.assertEqual(job.last_error, "invalid recipient")
        self.assertEqual(len(handler.failures), 1)

    async def test_unknown_job_type_fails_permanently(self):
        job_id = await self.manager.enqueue("nobody_handles_this", {})

        self.assertTrue(await self.worker.run_once())

        job = await self.manager.get_job(job_id)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.last_error, "Unknown job type: nobody_handles_this")

    async def test_timeout_is_a_retryable_failure(self):
        async def slow(payload):
            await asyncio.sleep(10)

        self.registry.register("slow", slow)
        worker = QueueWorker(self.manager, self.registry, idle=ConstantIdle(0), timeout=0.05)
        job_id = await self.manager.enqueue("slow", {})

        await worker.run_once()

        job = await self.manager.get_job(job_id)
        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual(job.last_error, "Job timed out after 0.05 seconds")

    async def test_blocking_sync_handler_times_out(self):
        def blocking(payload):
            time.sleep(0.5)
            return {"done": True}

        self.registry.register("blocking", blocking)
        worker = QueueWorker(self.manager, self.registry, idle=ConstantIdle(0), timeout=0.05)
        job_id = await self.manager.enqueue("blocking", {})

        await worker.run_once()

        job = await self.manager.get_job(job_id)
        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual(job.attempts, 1)
        self.assertEqual(job.last_error, "Job timed out after 0.05 seconds")

    async def test_completion_after_reclaim_is_not_recorded(self):
        """Test that a job reclaimed and claimed again while running keeps the new claim."""
        async def slow(payload):
            self.clock.advance(600)
            await self.manager.reclaim_stale(300)
            self.clock.current = (await self.manager.get_job(job_id)).execute_at
            self.assertIsNotNone(await self.manager.dequeue())
            return {"by": "first"}

        self.registry.register("slow", slow)
        job_id = await self.manager.enqueue("slow", {})
        worker = QueueWorker(self.manager, self.registry, idle=ConstantIdle(0), worker_id="w1")

        with self.assertLogs("WorkQueue.QueueWorker", level="WARNING") as logs:
            self.assertTrue(await worker.run_once())

        job = await self.manager.get_job(job_id)
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertEqual(job.attempts, 1)
        self.assertIsNone(job.result)
        self.assertTrue(any("[w1] Job" in line and "not recorded" in line for line in logs.output))

    def test_default_worker_id_is_hostname_and_pid(self):
        worker = QueueWorker(self.manager, self.registry)
        self.assertEqual(worker.worker_id, f"{socket.gethostname()}_{os.getpid()}")

    async def test_unserializable_result_fails_job(self):
        self.registry.register("odd", lambda payload: {"values": {1, 2, 3}})
        job_id = await self.manager.enqueue("odd", {})

        await self.worker.run_once()

        job = await self.manager.get_job(job_id)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertIn("not JSON serializable", job.last_error)

    async def test_process_batch_is_bounded(self):
        """Test that a batch stops at max_jobs and at the first empty dequeue."""
        self.registry.register("noop", lambda payload: None)
        await self.manager.enqueue_many([{"job_type": "noop"} for _ in range(5)])

        self.assertEqual(await self.worker.process_batch(3), 3)
        self.assertEqual(await self.worker.process_batch(10), 2)
        self.assertEqual(await self.worker.process_batch(10), 0)

        stats = await self.manager.get_queue_stats()
        self.assertEqual(stats["status_counts"], {"completed": 5})

    async def test_filters_limit_what_the_worker_claims(self):
        self.registry.register("noop", lambda payload: None)
        mine = await self.manager.enqueue("noop", {}, queue_name="mine")
        theirs = await self.manager.enqueue("noop", {}, queue_name="theirs")
        worker = QueueWorker(self.manager, self.registry, queue_name="mine", idle=ConstantIdle(0))

        self.assertEqual(await worker.process_batch(10), 1)
        self.assertEqual((await self.manager.get_job(mine)).status, JobStatus.COMPLETED)
        self.assertEqual((await self.manager.get_job(theirs)).status, JobStatus.PENDING)

    async def test_work_stops_at_max_jobs(self):
        self.registry.register("noop", lambda payload: None)
        await self.manager.enqueue_many([{"job_type": "noop"} for _ in range(4)])
        worker = QueueWorker(self.manager, self.registry, max_jobs=3, idle=ConstantIdle(0))

        await asyncio.wait_for(worker.work(), timeout=10)

        self.assertEqual(worker.jobs_processed, 3)
        self.assertEqual(await self.manager.size(), 1)

    async def test_work_stops_when_requested(self):
        worker = QueueWorker(self.manager, self.registry, idle=ConstantIdle(0))

        def stop(payload):
            worker.stop()

        self.registry.register("stop", stop)
        await self.manager.enqueue("stop", {})

        await asyncio.wait_for(worker.work(), timeout=10)
        self.assertEqual(worker.jobs_processed, 1)

    async def test_work_reclaims_stale_jobs(self):
        job_id = await self.manager.enqueue("noop", {})
        await self.claim(job_id)
        self.clock.advance(120)

        worker = QueueWorker(self.manager, self.registry, reclaim_after=60, idle=ConstantIdle(0))
        self.assertEqual(await worker.process_batch(1), 0)

        job = await self.manager.get_job(job_id)
        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual(job.attempts, 1)


if __name__ == "__main__":
    unittest.main()
