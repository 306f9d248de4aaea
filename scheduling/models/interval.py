"""
Half-open time intervals.
"""

from datetime import datetime, timedelta

from pydantic import BaseModel, Field, model_validator


class TimeInterval(BaseModel):
    """
    A half-open interval ``[start, end)``.

    Touching intervals (one ending exactly where the other starts)
    do not overlap.
    """

    start: datetime = Field(description="Inclusive start of the interval")
    end: datetime = Field(description="Exclusive end of the interval")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_ordering(self) -> "TimeInterval":
        if self.end <= self.start:
            raise ValueError(
                f"Interval end ({self.end.isoformat()}) must be after start "
                f"({self.start.isoformat()})"
            )
        return self

    @classmethod
    def from_start(cls, start: datetime, minutes: int) -> "TimeInterval":
        """Build an interval of ``minutes`` length beginning at ``start``."""
        return cls(start=start, end=start + timedelta(minutes=minutes))

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    @property
    def time_label(self) -> str:
        """Start time-of-day as ``HH:MM``."""
        return self.start.strftime("%H:%M")

    def overlaps(self, other: "TimeInterval") -> bool:
        return overlaps(self, other)

    def contains(self, other: "TimeInterval") -> bool:
        return contains(self, other)


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    """True iff the two intervals share at least one instant."""
    return a.start < b.end and b.start < a.end


def contains(a: TimeInterval, b: TimeInterval) -> bool:
    """True iff ``b`` lies entirely inside ``a``."""
    return a.start <= b.start and a.end >= b.end
