from datetime import datetime, timezone


class SystemClock:
    """Wall clock returning naive UTC datetimes, as stored in the jobs table."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)
