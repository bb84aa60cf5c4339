import os
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta

from core.config import QueueSettings
from core.model import Database
from core.queue.database_queue import DatabaseQueue
from core.queue.queue_manager import QueueManager


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.current += timedelta(seconds=seconds, **kwargs)
        return self.current


def make_settings(**overrides) -> QueueSettings:
    options = dict(
        default_priority=5,
        default_max_attempts=3,
        backoff_base=60,
        backoff_cap=3600,
        sleep=0,
        timeout=5,
    )
    options.update(overrides)
    return QueueSettings(**options)


class QueueTestCase(unittest.IsolatedAsyncioTestCase):
    """Runs each test against a fresh SQLite database file."""

    async def asyncSetUp(self):
        self.tmpdir = tempfile.mkdtemp()
        db_path = os.path.join(self.tmpdir, "queue.db")
        self.database = Database(f"sqlite+aiosqlite:///{db_path}")
        await self.database.create_tables()

        self.clock = FrozenClock()
        self.driver = DatabaseQueue(self.database)
        self.manager = QueueManager(self.driver, clock=self.clock, settings=make_settings())

    async def asyncTearDown(self):
        await self.database.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    async def claim(self, job_id: int):
        """Dequeue until the given job is claimed; fails the test otherwise."""
        job = await self.manager.dequeue()
        self.assertIsNotNone(job)
        self.assertEqual(job.id, job_id)
        return job
