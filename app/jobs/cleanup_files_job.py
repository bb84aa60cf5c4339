import logging
import time
from pathlib import Path

from core.exceptions import JobExecutionError
from core.job import JobHandler

logger = logging.getLogger("WorkQueue.Jobs.CleanupFilesJob")


class CleanupFilesJob(JobHandler):
    """
    Deletes files older than a number of days from a directory.

    Payload:
        directory: Directory to clean
        older_than_days: Minimum file age in days (default 7)
        pattern: Glob pattern of files to consider (default "*")
    """

    job_type = "cleanup_files"

    async def handle(self, payload):
        payload = payload or {}
        if not payload.get("directory"):
            raise JobExecutionError("Cleanup job requires a directory", retryable=False)

        directory = Path(payload["directory"])
        if not directory.is_dir():
            raise JobExecutionError(f"Not a directory: {directory}", retryable=False)

        max_age = float(payload.get("older_than_days", 7)) * 86400
        cutoff = time.time() - max_age

        deleted = 0
        freed = 0
        for path in directory.glob(payload.get("pattern", "*")):
            if path.is_file() and path.stat().st_mtime < cutoff:
                freed += path.stat().st_size
                path.unlink()
                deleted += 1

        logger.info(f"Deleted {deleted} file(s) from {directory} ({freed} bytes)")
        return {"files_deleted": deleted, "bytes_freed": freed}
