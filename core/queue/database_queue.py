import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, Dict, Any, List, Sequence
from sqlalchemy import select, update, delete, func, and_, or_
from sqlalchemy.exc import OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import TransientStorageError
from core.job import Job, JobStatus
from core.model import Database
from core.queue.queue_driver import QueueDriver
from app.models.queue_job import QueueJob

logger = logging.getLogger("WorkQueue.DatabaseQueue")

# Timestamp column that records when a job entered each terminal status
TERMINAL_TIMESTAMPS = {
    JobStatus.COMPLETED: QueueJob.completed_at,
    JobStatus.FAILED: QueueJob.failed_at,
    JobStatus.CANCELLED: QueueJob.cancelled_at,
}


class DatabaseQueue(QueueDriver):
    """
    Database-backed job store using SQLAlchemy.
    Provides persistent job storage with row-level locking on dequeue.
    """

    def __init__(self, database: Database):
        """
        Initialize the database queue driver.

        Args:
            database: Configured database holding the queue_jobs table
        """
        self.database = database
        self.connection_name = "database"

    @asynccontextmanager
    async def _session(self, action: str):
        """Open a session, rolling back and translating connection failures."""
        if not self.database.is_enabled:
            logger.error(f"Cannot {action} - database is not configured")
            raise TransientStorageError("Database is not configured")

        session: AsyncSession = self.database.session()
        try:
            yield session
        except (OperationalError, InterfaceError) as e:
            await session.rollback()
            logger.error(f"Failed to {action}: {str(e)}")
            raise TransientStorageError(f"Storage unavailable during {action}: {e}") from e
        except Exception as e:
            await session.rollback()
            logger.error(f"Failed to {action}: {str(e)}")
            raise
        finally:
            await session.close()

    async def insert(self, rows: List[Dict[str, Any]]) -> List[int]:
        """Insert new job rows in a single transaction."""
        async with self._session("insert jobs") as session:
            jobs = [QueueJob(**row) for row in rows]
            session.add_all(jobs)
            await session.flush()
            ids = [job.id for job in jobs]
            await session.commit()
            logger.debug(f"Inserted {len(ids)} job(s): {ids}")
            return ids

    async def claim(
        self,
        now: datetime,
        queue_name: Optional[str] = None,
        job_types: Optional[Sequence[str]] = None,
    ) -> Optional[Job]:
        """Claim the next eligible job: lowest priority value first, then oldest."""
        async with self._session("claim job") as session:
            while True:
                # FOR UPDATE SKIP LOCKED keeps concurrent claimers off the same row
                # where the backend supports it; the guarded update below decides
                # the winner everywhere else.
                stmt = select(QueueJob).where(
                    QueueJob.status == JobStatus.PENDING,
                    QueueJob.execute_at <= now,
                )
                if queue_name:
                    stmt = stmt.where(QueueJob.queue_name == queue_name)
                if job_types:
                    stmt = stmt.where(QueueJob.job_type.in_(list(job_types)))
                stmt = (
                    stmt.order_by(QueueJob.priority, QueueJob.created_at, QueueJob.id)
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )

                result = await session.execute(stmt)
                job = result.scalars().first()

                if not job:
                    await session.rollback()
                    return None

                claimed = await session.execute(
                    update(QueueJob)
                    .where(QueueJob.id == job.id, QueueJob.status == JobStatus.PENDING)
                    .values(status=JobStatus.PROCESSING, started_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )

                if claimed.rowcount != 1:
                    # Another worker claimed it between our read and write
                    await session.rollback()
                    session.expunge_all()
                    logger.debug(f"Job {job.id} was claimed concurrently, selecting again")
                    continue

                await session.refresh(job)
                await session.commit()

                logger.debug(f"Job {job.id} claimed from queue '{job.queue_name}'")
                return Job.from_model(job)

    async def find(self, job_id: int) -> Optional[Job]:
        """Fetch a job by id."""
        async with self._session("find job") as session:
            result = await session.execute(select(QueueJob).where(QueueJob.id == job_id))
            job = result.scalars().first()
            return Job.from_model(job) if job else None

    async def transition(
        self,
        job_id: int,
        from_status: str,
        values: Dict[str, Any],
        attempts: Optional[int] = None,
    ) -> bool:
        """Update a job only if it is still in ``from_status``."""
        async with self._session("update job") as session:
            conditions = [QueueJob.id == job_id, QueueJob.status == from_status]
            if attempts is not None:
                conditions.append(QueueJob.attempts == attempts)

            result = await session.execute(
                update(QueueJob)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def count_by_status(self, queue_name: Optional[str] = None) -> Dict[str, int]:
        """Count jobs grouped by status."""
        async with self._session("count jobs") as session:
            stmt = select(QueueJob.status, func.count(QueueJob.id)).group_by(QueueJob.status)
            if queue_name:
                stmt = stmt.where(QueueJob.queue_name == queue_name)

            result = await session.execute(stmt)
            return {status: int(count) for status, count in result.all()}

    async def count_failed_since(
        self,
        since: datetime,
        queue_name: Optional[str] = None,
    ) -> int:
        """Count jobs that reached failed at or after ``since``."""
        async with self._session("count failed jobs") as session:
            stmt = select(func.count(QueueJob.id)).where(
                QueueJob.status == JobStatus.FAILED,
                QueueJob.failed_at >= since,
            )
            if queue_name:
                stmt = stmt.where(QueueJob.queue_name == queue_name)

            result = await session.execute(stmt)
            return int(result.scalar() or 0)

    async def list_jobs(
        self,
        status: Optional[str] = None,
        queue_name: Optional[str] = None,
        limit: int = 50,
    ) -> List[Job]:
        """List jobs newest first."""
        async with self._session("list jobs") as session:
            stmt = select(QueueJob)
            if status:
                stmt = stmt.where(QueueJob.status == status)
            if queue_name:
                stmt = stmt.where(QueueJob.queue_name == queue_name)
            stmt = stmt.order_by(QueueJob.created_at.desc(), QueueJob.id.desc()).limit(limit)

            result = await session.execute(stmt)
            return [Job.from_model(job) for job in result.scalars().all()]

    async def stale(self, started_before: datetime) -> List[Job]:
        """List processing jobs claimed before ``started_before``."""
        async with self._session("list stale jobs") as session:
            stmt = (
                select(QueueJob)
                .where(
                    QueueJob.status == JobStatus.PROCESSING,
                    QueueJob.started_at < started_before,
                )
                .order_by(QueueJob.started_at, QueueJob.id)
            )

            result = await session.execute(stmt)
            return [Job.from_model(job) for job in result.scalars().all()]

    async def purge(self, cutoffs: Dict[str, datetime]) -> int:
        """Delete terminal jobs older than a per-status cutoff."""
        if not cutoffs:
            return 0

        clauses = []
        for status, cutoff in cutoffs.items():
            if status not in TERMINAL_TIMESTAMPS:
                raise ValueError(f"Cannot purge jobs in non-terminal status '{status}'")
            clauses.append(and_(QueueJob.status == status, TERMINAL_TIMESTAMPS[status] < cutoff))

        async with self._session("purge jobs") as session:
            result = await session.execute(
                delete(QueueJob)
                .where(or_(*clauses))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def size(self, queue_name: str = "default") -> int:
        """Get the number of pending jobs in a queue."""
        async with self._session("get queue size") as session:
            result = await session.execute(
                select(func.count(QueueJob.id)).where(
                    QueueJob.queue_name == queue_name,
                    QueueJob.status == JobStatus.PENDING,
                )
            )
            return int(result.scalar() or 0)
