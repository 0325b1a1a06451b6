from datetime import date, datetime, time, timezone


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 instant, accepting the trailing 'Z' form."""
    return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))


def to_iso(value: datetime) -> str:
    """Format an instant as ISO-8601 UTC with millisecond precision and a 'Z' suffix."""
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def day_start(day: date) -> datetime:
    """UTC midnight of a calendar day."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def to_epoch_ms(value: datetime) -> float:
    return ensure_utc(value).timestamp() * 1000.0
