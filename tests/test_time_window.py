"""Tests for the buffered time window value type."""

from __future__ import annotations

from datetime import date, time

import pytest

from venue_booking.domain.errors import InvalidRangeError
from venue_booking.domain.time_window import TimeWindow

_DAY = date(2026, 5, 4)


def _window(start: time, end: time, before: int = 0, after: int = 0) -> TimeWindow:
    return TimeWindow.of(_DAY, start, end).with_buffers(before, after)


def test_overlap_is_symmetric():
    """a.overlaps(b) must always agree with b.overlaps(a)."""
    a = _window(time(9, 0), time(10, 0))
    b = _window(time(9, 30), time(11, 0))
    c = _window(time(12, 0), time(13, 0))
    assert a.overlaps(b) and b.overlaps(a)
    assert not a.overlaps(c) and not c.overlaps(a)


def test_touching_boundary_does_not_overlap():
    """A window ending at 10:00 does not collide with one starting at 10:00."""
    a = _window(time(9, 0), time(10, 0))
    b = _window(time(10, 0), time(11, 0))
    assert not a.overlaps(b)
    assert not b.overlaps(a)


def test_buffers_widen_the_window():
    window = _window(time(10, 0), time(11, 0), before=15, after=30)
    assert window.formatted_start() == "09:45"
    assert window.formatted_end() == "11:30"


def test_buffers_make_touching_windows_overlap():
    """Back-to-back bookings collide once a buffer is added."""
    a = _window(time(9, 0), time(10, 0), after=10)
    b = _window(time(10, 0), time(11, 0))
    assert a.overlaps(b)


def test_after_buffer_clamps_to_end_of_day():
    """Buffers never spill into the next day; the end renders as 24:00."""
    window = _window(time(23, 0), time(23, 50), after=30)
    assert window.formatted_end() == "24:00"
    assert window.end.date() == date(2026, 5, 5)
    assert window.date == _DAY


def test_before_buffer_clamps_to_start_of_day():
    window = _window(time(0, 10), time(1, 0), before=60)
    assert window.formatted_start() == "00:00"
    assert window.start.date() == _DAY


def test_start_not_before_end_raises():
    with pytest.raises(InvalidRangeError):
        TimeWindow.of(_DAY, time(10, 0), time(10, 0))
    with pytest.raises(InvalidRangeError):
        TimeWindow.of(_DAY, time(11, 0), time(10, 0))


def test_missing_bound_raises():
    with pytest.raises(InvalidRangeError):
        TimeWindow.of(_DAY, None, time(10, 0))
    with pytest.raises(InvalidRangeError):
        TimeWindow.of(None, time(9, 0), time(10, 0))


def test_invalid_range_is_a_value_error():
    """Callers that only know about ValueError still catch bad ranges."""
    with pytest.raises(ValueError):
        TimeWindow.of(_DAY, time(12, 0), time(8, 0))
