from sqlalchemy import Column, Integer, String, Text, DateTime, Index
from core.model import Base


class QueueJob(Base):
    """Model for queue_jobs table - stores every job from enqueue until cleanup."""

    __tablename__ = "queue_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_type = Column(String(100), nullable=False)
    queue_name = Column(String(100), nullable=False, default="default")
    priority = Column(Integer, nullable=False, default=5)
    payload = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    execute_at = Column(DateTime, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)
    result = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Composite indexes for the dequeue scan, per-queue stats and job type filters
    __table_args__ = (
        Index("queue_jobs_status_execute_at_index", "status", "execute_at"),
        Index("queue_jobs_queue_name_status_index", "queue_name", "status"),
        Index("queue_jobs_status_job_type_index", "status", "job_type"),
    )

    def __repr__(self):
        return (
            f"<QueueJob(id={self.id}, job_type='{self.job_type}', "
            f"queue='{self.queue_name}', status='{self.status}', attempts={self.attempts})>"
        )
