import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import OperationalError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import TransientStorageError
from core.job import JobStatus
from core.model import Database
from core.queue.database_queue import DatabaseQueue
from tests.support import QueueTestCase


class TestConcurrentClaims(QueueTestCase):
    async def test_each_job_claimed_by_exactly_one_caller(self):
        """Test that concurrent dequeues never return the same job."""
        ids = await self.manager.enqueue_many([{"job_type": "a"} for _ in range(8)])

        results = await asyncio.gather(*(self.manager.dequeue() for _ in range(8)))

        claimed = [job.id for job in results if job is not None]
        self.assertEqual(len(claimed), len(set(claimed)))
        self.assertEqual(sorted(claimed), sorted(ids))

    async def test_more_callers_than_jobs(self):
        ids = await self.manager.enqueue_many([{"job_type": "a"} for _ in range(3)])

        results = await asyncio.gather(*(self.manager.dequeue() for _ in range(6)))

        claimed = [job.id for job in results if job is not None]
        self.assertEqual(sorted(claimed), sorted(ids))
        self.assertEqual(results.count(None), 3)

    async def test_guarded_update_loses_against_claimed_job(self):
        """Test that a status-guarded write fails once another caller changed the job."""
        job_id = await self.manager.enqueue("a", {})
        await self.claim(job_id)

        stale_write = await self.driver.transition(
            job_id, JobStatus.PENDING, {"status": JobStatus.PROCESSING}
        )
        self.assertFalse(stale_write)

    async def test_attempts_guard(self):
        job_id = await self.manager.enqueue("a", {})
        await self.claim(job_id)

        self.assertFalse(
            await self.driver.transition(job_id, JobStatus.PROCESSING, {"attempts": 5}, attempts=1)
        )
        self.assertTrue(
            await self.driver.transition(job_id, JobStatus.PROCESSING, {"attempts": 1}, attempts=0)
        )


class TestStorageErrors(QueueTestCase):
    async def test_unconfigured_database(self):
        driver = DatabaseQueue(Database())
        with self.assertRaises(TransientStorageError):
            await driver.claim(self.clock.now())

    async def test_operational_error_is_translated(self):
        """Test that connection failures surface as TransientStorageError."""
        failure = OperationalError("SELECT 1", {}, Exception("server has gone away"))
        with patch.object(AsyncSession, "execute", AsyncMock(side_effect=failure)):
            with self.assertRaises(TransientStorageError) as ctx:
                await self.manager.dequeue()

        self.assertIs(ctx.exception.__cause__, failure)

    async def test_other_storage_errors_propagate_unchanged(self):
        failure = IntegrityError("INSERT", {}, Exception("constraint"))
        with patch.object(AsyncSession, "flush", AsyncMock(side_effect=failure)):
            with self.assertRaises(IntegrityError):
                await self.manager.enqueue("a", {})

    async def test_purge_refuses_live_statuses(self):
        with self.assertRaises(ValueError):
            await self.driver.purge({JobStatus.PENDING: self.clock.now()})


if __name__ == "__main__":
    unittest.main()
