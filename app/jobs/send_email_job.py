import logging
import uuid
from datetime import datetime, timezone

from core.exceptions import JobExecutionError
from core.job import JobHandler

logger = logging.getLogger("WorkQueue.Jobs.SendEmailJob")


class SendEmailJob(JobHandler):
    """
    Example handler for sending emails in the background.

    Usage:
        await manager.enqueue(
            "send_email",
            {"to": "user@example.com", "subject": "Welcome!", "message": "Thanks for signing up."},
            queue_name="emails",
        )
    """

    job_type = "send_email"
    timeout = 30

    async def handle(self, payload):
        """
        Execute the job - send an email.
        In a real application, this would use an email service like SendGrid, AWS SES, etc.
        """
        payload = payload or {}
        if not payload.get("to") or not payload.get("subject"):
            # Retrying cannot fix a malformed payload
            raise JobExecutionError('Email job requires "to" and "subject"', retryable=False)

        logger.info(f"Sending email to {payload['to']}")
        logger.info(f"Subject: {payload['subject']}")

        return {
            "email_sent": True,
            "recipient": payload["to"],
            "message_id": f"msg_{uuid.uuid4().hex[:12]}",
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }

    async def failed(self, job, exception):
        """
        Handle permanent job failure.
        This is called when the job has no retries left.
        """
        recipient = (job.payload or {}).get("to")
        logger.error(f"Failed to send email to {recipient} after {job.attempts + 1} attempt(s)")
        logger.error(f"Error: {str(exception)}")
