"""Buffered time window value type used for overlap checks."""

from __future__ import annotations

import datetime as dt
from datetime import datetime, time, timedelta

from pydantic import BaseModel, ConfigDict

from venue_booking.domain.errors import InvalidRangeError

# Rendered in place of 00:00 when a window ends at the next day's midnight.
END_OF_DAY_LABEL = "24:00"


def format_time_label(day: dt.date, value: datetime, is_end: bool = False) -> str:
    """Render *value* as ``HH:MM`` relative to *day*."""
    if is_end and value.time() == time.min and value.date() > day:
        return END_OF_DAY_LABEL
    return value.strftime("%H:%M")


def day_bounds(day: dt.date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class TimeWindow(BaseModel):
    """A ``[start, end)`` interval anchored to a single calendar day."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    start: datetime
    end: datetime

    @classmethod
    def of(cls, date: dt.date | None, start: time | None, end: time | None) -> TimeWindow:
        if date is None or start is None or end is None:
            raise InvalidRangeError("date, from and to must be non-null")
        if start >= end:
            raise InvalidRangeError("from must be before to")
        return cls(
            date=date,
            start=datetime.combine(date, start),
            end=datetime.combine(date, end),
        )

    def with_buffers(self, before_min: int, after_min: int) -> TimeWindow:
        """Widen the window by the buffers, clamped to the window's own day.

        Buffers never spill into the neighbouring day: a window ending at
        23:50 with a 30 minute after-buffer ends at 24:00.
        """
        day_start, day_end = day_bounds(self.date)
        start = max(self.start - timedelta(minutes=before_min), day_start)
        end = min(self.end + timedelta(minutes=after_min), day_end)
        return TimeWindow(date=self.date, start=start, end=end)

    def overlaps(self, other: TimeWindow) -> bool:
        # Touching boundaries do not overlap.
        return self.start < other.end and other.start < self.end

    def formatted_start(self) -> str:
        return format_time_label(self.date, self.start)

    def formatted_end(self) -> str:
        return format_time_label(self.date, self.end, is_end=True)
