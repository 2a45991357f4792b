"""Service modelling shared technical-support staff as fixed-size day blocks.

Each request charges one slot in every block its demand interval touches;
a request fits only if every touched block still has a free slot.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import Counter
from collections.abc import Iterable
from datetime import datetime, time, timedelta

from dateutil.rrule import MINUTELY, rrule

from venue_booking.config import Settings, get_settings
from venue_booking.domain.models import (
    BLOCKING_STATUSES,
    CapacityBlock,
    TechCapacity,
    TechCapacityConfig,
    TechEvent,
    TechSupportMode,
)
from venue_booking.domain.time_window import day_bounds, format_time_label
from venue_booking.repos.memory import EventRepository, TechCapacityConfigRepository

logger = logging.getLogger(__name__)


def block_starts(date: dt.date, block_minutes: int) -> list[datetime]:
    """Start of every block of the day, stepping from midnight."""
    day_start, day_end = day_bounds(date)
    return list(
        rrule(
            MINUTELY,
            interval=block_minutes,
            dtstart=day_start,
            until=day_end - timedelta(seconds=1),
        )
    )


def _demand_intervals(
    date: dt.date,
    start: time,
    end: time,
    buffer_before: int,
    buffer_after: int,
    mode: TechSupportMode,
) -> list[tuple[datetime, datetime]]:
    event_start = datetime.combine(date, start)
    event_end = datetime.combine(date, end)
    if mode == TechSupportMode.ATTENDED:
        return [
            (
                event_start - timedelta(minutes=buffer_before),
                event_end + timedelta(minutes=buffer_after),
            )
        ]
    # Setup-only crews work the margins and leave during the event itself.
    intervals = []
    if buffer_before > 0:
        intervals.append((event_start - timedelta(minutes=buffer_before), event_start))
    if buffer_after > 0:
        intervals.append((event_end, event_end + timedelta(minutes=buffer_after)))
    return intervals


def compute_blocks(
    date: dt.date,
    start: time | None,
    end: time | None,
    buffer_before: int,
    buffer_after: int,
    mode: TechSupportMode | None,
    block_minutes: int,
) -> list[time]:
    """Return the ordered start times of the blocks a request draws staff from."""
    if start is None or end is None:
        return []
    mode = mode or TechSupportMode.SETUP_ONLY
    day_start, day_end = day_bounds(date)
    grid = block_starts(date, block_minutes)
    step = timedelta(minutes=block_minutes)

    touched: dict[time, None] = {}
    for range_start, range_end in _demand_intervals(
        date, start, end, buffer_before, buffer_after, mode
    ):
        range_start = max(range_start, day_start)
        range_end = min(range_end, day_end)
        if range_end <= range_start:
            continue
        for block_start in grid:
            if block_start < range_end and block_start + step > range_start:
                touched[block_start.time()] = None
    return sorted(touched)


class TechCapacityService:
    def __init__(
        self,
        event_repo: EventRepository,
        config_repo: TechCapacityConfigRepository,
        settings: Settings | None = None,
    ) -> None:
        self.event_repo = event_repo
        self.config_repo = config_repo
        self.settings = settings or get_settings()

    def get_active_config(self) -> TechCapacityConfig:
        """The active configuration, or the configured default if none is active."""
        config = self.config_repo.find_first_active()
        if config is not None:
            return config
        return TechCapacityConfig(
            block_minutes=self.settings.default_block_minutes,
            default_slots_per_block=self.settings.default_slots_per_block,
        )

    def _build_usage(
        self, date: dt.date, config: TechCapacityConfig, ignore_event_id: str | None = None
    ) -> Counter[time]:
        usage: Counter[time] = Counter()
        for event in self.event_repo.find_tech_events_for_date(
            date, BLOCKING_STATUSES, ignore_event_id
        ):
            usage.update(
                compute_blocks(
                    date,
                    event.schedule_from,
                    event.schedule_to,
                    event.buffer_before_min,
                    event.buffer_after_min,
                    event.tech_support_mode,
                    config.block_minutes,
                )
            )
        return usage

    def has_capacity(
        self,
        date: dt.date | None,
        start: time | None,
        end: time | None,
        buffer_before: int,
        buffer_after: int,
        mode: TechSupportMode | None,
        ignore_event_id: str | None = None,
    ) -> bool:
        if date is None or start is None or end is None:
            return True
        config = self.get_active_config()
        usage = self._build_usage(date, config, ignore_event_id)
        required = compute_blocks(
            date, start, end, buffer_before, buffer_after, mode, config.block_minutes
        )
        full = _full_blocks(required, usage, config.default_slots_per_block)
        if full:
            logger.warning(
                "Tech capacity exhausted on %s at %s",
                date,
                ", ".join(b.strftime("%H:%M") for b in full),
            )
            return False
        return True

    def get_capacity(self, date: dt.date) -> TechCapacity:
        config = self.get_active_config()
        usage = self._build_usage(date, config)
        _, day_end = day_bounds(date)
        step = timedelta(minutes=config.block_minutes)
        blocks = []
        for block_start in block_starts(date, config.block_minutes):
            used = usage.get(block_start.time(), 0)
            blocks.append(
                CapacityBlock(
                    from_label=format_time_label(date, block_start),
                    to_label=format_time_label(
                        date, min(block_start + step, day_end), is_end=True
                    ),
                    used=used,
                    available=max(config.default_slots_per_block - used, 0),
                )
            )
        return TechCapacity(
            date=date,
            block_minutes=config.block_minutes,
            default_slots=config.default_slots_per_block,
            blocks=blocks,
        )

    def get_events(self, date: dt.date) -> list[TechEvent]:
        """Roster of technical-support events for the day, by start time."""
        events = self.event_repo.find_tech_events_for_date(date, BLOCKING_STATUSES)
        roster = [
            TechEvent(
                event_id=e.id,
                name=e.name,
                space_id=e.space_id,
                schedule_from=e.schedule_from,
                schedule_to=e.schedule_to,
                tech_support_mode=e.tech_support_mode or TechSupportMode.SETUP_ONLY,
                requesting_area=e.requesting_area,
            )
            for e in events
        ]
        return sorted(
            roster,
            key=lambda t: (t.schedule_from is None, t.schedule_from or time.min, t.event_id),
        )


def _full_blocks(required: Iterable[time], usage: Counter[time], capacity: int) -> list[time]:
    return [block for block in required if usage[block] + 1 > capacity]
