class QueueError(Exception):
    """Base class for all job queue errors."""


class ValidationError(QueueError):
    """Raised when enqueue arguments are malformed. Nothing is written."""


class NotFoundError(QueueError):
    """Raised when a job id does not exist."""

    def __init__(self, job_id: int):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class TransientStorageError(QueueError):
    """
    The storage backend was unreachable during an operation.
    The caller may retry the whole operation.
    """


class JobExecutionError(QueueError):
    """
    Raised by job handlers to report a failure.

    Args:
        message: Error message stored as the job's last_error
        retryable: Whether the job may be retried after this failure
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class UnknownJobTypeError(QueueError):
    """Raised when no handler is registered for a job type."""

    def __init__(self, job_type: str):
        super().__init__(f"Unknown job type: {job_type}")
        self.job_type = job_type
