"""Time helpers. Timestamps are timezone-aware UTC throughout."""
from datetime import datetime, time, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(moment: datetime) -> datetime:
    """Midnight of the UTC calendar day containing `moment`."""
    moment = moment.astimezone(timezone.utc)
    return datetime.combine(moment.date(), time.min, tzinfo=timezone.utc)


def to_iso(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a Z suffix."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
