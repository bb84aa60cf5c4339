import logging
from statistics import mean

from core.exceptions import JobExecutionError
from core.job import JobHandler

logger = logging.getLogger("WorkQueue.Jobs.ProcessDataJob")


class ProcessDataJob(JobHandler):
    """
    Example handler summarizing sensor readings.

    Usage:
        await manager.enqueue(
            "process_data",
            {"device_id": "sensor-001", "readings": [{"temperature": 25.5, "humidity": 60}]},
            queue_name="data-processing",
            max_attempts=5,
        )
    """

    job_type = "process_data"
    timeout = 120  # Longer timeout for data processing

    # Readings above these limits are reported as alerts
    thresholds = {"temperature": 30, "humidity": 80}

    async def handle(self, payload):
        payload = payload or {}
        readings = payload.get("readings")
        if not isinstance(readings, list) or not readings:
            raise JobExecutionError("Data job requires a non-empty list of readings", retryable=False)

        device_id = payload.get("device_id")
        logger.info(f"Processing {len(readings)} reading(s) from device {device_id}")

        summary = {}
        alerts = []
        for metric, limit in self.thresholds.items():
            values = [r[metric] for r in readings if isinstance(r, dict) and r.get(metric) is not None]
            if not values:
                continue
            summary[metric] = {"min": min(values), "max": max(values), "mean": mean(values)}
            if max(values) > limit:
                logger.warning(f"High {metric} detected on device {device_id}: {max(values)}")
                alerts.append(metric)

        return {"device_id": device_id, "summary": summary, "alerts": alerts}
