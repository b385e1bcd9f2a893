from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from .errors import InvalidInterval


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to UTC. Naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    text = str(value).strip()
    if not text:
        raise InvalidInterval("Timestamp must not be empty.")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as error:
        raise InvalidInterval(f"Invalid ISO-8601 timestamp: {text!r}") from error
    return to_utc(parsed)


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", to_utc(self.start))
        object.__setattr__(self, "end", to_utc(self.end))
        if self.start >= self.end:
            raise InvalidInterval("Reservation start time must be earlier than end time.")

    @classmethod
    def parse(cls, start: str | datetime, end: str | datetime) -> "Interval":
        return cls(parse_timestamp(start), parse_timestamp(end))

    def contains(self, instant: datetime) -> bool:
        instant = to_utc(instant)
        return self.start <= instant < self.end

    def overlaps(self, other: "Interval") -> bool:
        return overlaps(self, other)

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def overlaps(a: Interval, b: Interval) -> bool:
    """Return True when two intervals share at least one instant.

    Intervals are half-open ranges: [start, end)
    so back-to-back bookings (e.g. 10:00-11:00 and 11:00-12:00) do not overlap.
    Containment in either direction, partial overlap on either side and
    identical ranges all satisfy both comparisons.
    """
    return a.start < b.end and b.start < a.end
