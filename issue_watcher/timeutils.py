"""Clock helpers. All persisted timestamps are naive UTC."""

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]

EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_epoch_seconds(moment: datetime) -> float:
    """Seconds since the Unix epoch for a naive UTC datetime."""
    return (moment - EPOCH).total_seconds()


def parse_github_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 GitHub timestamp ('2024-05-01T10:00:00Z') into naive UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
