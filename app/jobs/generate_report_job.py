import logging
from datetime import datetime, timezone

from core.job import JobHandler

logger = logging.getLogger("WorkQueue.Jobs.GenerateReportJob")


class GenerateReportJob(JobHandler):
    """
    Example handler for generating reports in the background.

    Usage:
        # Run after one hour, on the reports queue
        await manager.enqueue(
            "generate_report",
            {"type": "daily", "format": "pdf", "user_id": 123},
            queue_name="reports",
            delay_seconds=3600,
        )
    """

    job_type = "generate_report"
    timeout = 300  # 5 minutes for report generation

    async def handle(self, payload):
        payload = payload or {}
        report_type = payload.get("type", "unknown")
        report_format = payload.get("format", "pdf")

        logger.info(f"Generating {report_type} report for user {payload.get('user_id')}")

        # In a real application, you might:
        # - Query database for report data
        # - Render the report and upload it to storage
        # - Notify the user with a download link
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        report_file = f"{report_type}_report_{stamp}.{report_format}"

        logger.info(f"Report generated successfully: {report_file}")
        return {
            "report_generated": True,
            "type": report_type,
            "format": report_format,
            "file": report_file,
        }
