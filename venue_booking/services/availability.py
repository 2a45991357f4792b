"""Service deciding whether a space is free for a buffered time slot."""

from __future__ import annotations

import datetime as dt
import logging

from venue_booking.domain.errors import NotFoundError
from venue_booking.domain.models import (
    BLOCKING_STATUSES,
    AvailabilityQuery,
    AvailabilityResult,
    ConflictItem,
    OccupancyBlock,
    PublicAvailabilityResult,
    Space,
    SpaceOccupancy,
)
from venue_booking.domain.time_window import TimeWindow
from venue_booking.repos.memory import EventRepository, SpaceRepository

logger = logging.getLogger(__name__)

FREE_LOCATION_REASON = "free location: not validated against spaces"


def _resolve_buffer(requested: int | None, default: int | None) -> int:
    if requested is not None:
        return requested
    return default or 0


class AvailabilityService:
    def __init__(self, event_repo: EventRepository, space_repo: SpaceRepository) -> None:
        self.event_repo = event_repo
        self.space_repo = space_repo

    def _get_space(self, space_id: str) -> Space:
        space = self.space_repo.get_active(space_id)
        if space is None:
            raise NotFoundError("Space not found")
        return space

    def check_availability(self, query: AvailabilityQuery) -> AvailabilityResult:
        """Return every blocking booking whose buffered window overlaps *query*.

        Free-text locations are outside the engine's knowledge and are always
        reported available (``skipped=True``).
        """
        if query.space_id is None:
            return AvailabilityResult(
                available=True, skipped=True, reason=FREE_LOCATION_REASON
            )

        space = self._get_space(query.space_id)
        candidate = TimeWindow.of(
            query.date, query.schedule_from, query.schedule_to
        ).with_buffers(
            _resolve_buffer(query.buffer_before_min, space.default_buffer_before_min),
            _resolve_buffer(query.buffer_after_min, space.default_buffer_after_min),
        )

        existing_events = self.event_repo.find_conflicting_events(
            query.date, space.id, BLOCKING_STATUSES, query.ignore_event_id
        )
        hits: list[tuple[TimeWindow, ConflictItem]] = []
        for event in existing_events:
            if not event.has_schedule:
                continue
            window = TimeWindow.of(
                event.date, event.schedule_from, event.schedule_to
            ).with_buffers(event.buffer_before_min, event.buffer_after_min)
            if not candidate.overlaps(window):
                continue
            hits.append(
                (
                    window,
                    ConflictItem(
                        event_id=event.id,
                        status=event.status,
                        title=event.name,
                        space_id=event.space_id,
                        date=event.date,
                        effective_from=window.formatted_start(),
                        effective_to=window.formatted_end(),
                        internal=event.internal,
                        buffer_before_min=event.buffer_before_min,
                        buffer_after_min=event.buffer_after_min,
                    ),
                )
            )
        hits.sort(key=lambda hit: (hit[0].start, hit[1].event_id))
        conflicts = tuple(item for _, item in hits)

        if conflicts:
            logger.info(
                "Space %s on %s %s-%s overlaps %d booking(s)",
                space.id,
                query.date,
                candidate.formatted_start(),
                candidate.formatted_end(),
                len(conflicts),
            )
        return AvailabilityResult(
            available=not conflicts,
            effective_from=candidate.formatted_start(),
            effective_to=candidate.formatted_end(),
            conflicts=conflicts,
        )

    def check_public(self, query: AvailabilityQuery) -> PublicAvailabilityResult:
        return self.check_availability(query).to_public()

    def get_space_occupancy(self, space_id: str, date: dt.date) -> SpaceOccupancy:
        """Raw (unbuffered) day timeline of blocking bookings at a space."""
        space = self._get_space(space_id)
        events = self.event_repo.find_conflicting_events(date, space.id, BLOCKING_STATUSES)
        windows = sorted(
            (
                (TimeWindow.of(e.date, e.schedule_from, e.schedule_to), e.status)
                for e in events
                if e.has_schedule
            ),
            key=lambda item: item[0].start,
        )
        return SpaceOccupancy(
            space_id=space.id,
            date=date,
            blocks=[
                OccupancyBlock(
                    from_label=window.formatted_start(),
                    to_label=window.formatted_end(),
                    status=status,
                )
                for window, status in windows
            ],
        )
