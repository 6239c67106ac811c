"""Time utilities shared by the workflows."""

from datetime import UTC, datetime

MILLISECONDS_PER_SECOND = 1000


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def to_epoch_ms(moment: datetime) -> int:
    """Return ``moment`` as integer Unix epoch milliseconds."""
    return int(moment.timestamp() * MILLISECONDS_PER_SECOND)


def isoformat_z(moment: datetime) -> str:
    """Format ``moment`` as ISO-8601 UTC with milliseconds, e.g. ``2024-01-01T00:00:00.000Z``."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
