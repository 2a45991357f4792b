"""Append-only audit sink for schedule and status changes.

Writes are best-effort: a failing write is logged and dropped so it never
unwinds the scheduling decision that triggered it.
"""

from __future__ import annotations

import datetime as dt
import logging
from datetime import time

from venue_booking.domain.models import Event, HistoryEntry, HistoryType, Status
from venue_booking.repos.memory import HistoryRepository

logger = logging.getLogger(__name__)


def _trim_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def schedule_details(date: dt.date | None, start: time | None, end: time | None) -> str | None:
    parts: list[str] = []
    if date is not None:
        parts.append(f"Date {date.isoformat()}")
    if start is not None and end is not None:
        parts.append(f"Time {start.strftime('%H:%M')}-{end.strftime('%H:%M')}")
    return " | ".join(parts) or None


class AuditService:
    def __init__(self, history_repo: HistoryRepository) -> None:
        self.history_repo = history_repo

    def _write(self, entry: HistoryEntry) -> None:
        try:
            self.history_repo.add(entry)
        except Exception:
            logger.exception(
                "Failed to record %s audit entry for event %s", entry.type, entry.event_id
            )

    def record_status_change(
        self,
        event: Event,
        actor: str | None,
        from_status: Status | None,
        to_status: Status | None,
        reason: str | None = None,
        note: str | None = None,
    ) -> None:
        self._write(
            HistoryEntry(
                event_id=event.id,
                type=HistoryType.STATUS,
                actor=actor,
                field="status",
                from_value=from_status.value if from_status else None,
                to_value=to_status.value if to_status else None,
                reason=_trim_to_none(reason),
                note=_trim_to_none(note),
            )
        )

    def record_schedule_change(
        self,
        event: Event,
        actor: str | None,
        date: dt.date | None,
        start: time | None,
        end: time | None,
    ) -> None:
        self._write(
            HistoryEntry(
                event_id=event.id,
                type=HistoryType.SCHEDULE_CHANGE,
                actor=actor,
                field="schedule",
                details=schedule_details(date, start, end),
            )
        )

    def record_reprogram(
        self,
        event: Event,
        actor: str | None,
        reason: str | None = None,
        note: str | None = None,
    ) -> None:
        self._write(
            HistoryEntry(
                event_id=event.id,
                type=HistoryType.REPROGRAM,
                actor=actor,
                field="schedule",
                details=schedule_details(event.date, event.schedule_from, event.schedule_to),
                reason=_trim_to_none(reason),
                note=_trim_to_none(note),
            )
        )

    def record_space_conflict(
        self,
        event: Event,
        actor: str | None,
        details: str | None,
        reason: str | None = None,
        note: str | None = None,
    ) -> None:
        self._write(
            HistoryEntry(
                event_id=event.id,
                type=HistoryType.SPACE_CONFLICT,
                actor=actor,
                details=_trim_to_none(details),
                reason=_trim_to_none(reason),
                note=_trim_to_none(note),
            )
        )

    def record_tech_capacity_reject(
        self,
        event: Event,
        actor: str | None,
        details: str | None,
        reason: str | None = None,
        note: str | None = None,
    ) -> None:
        self._write(
            HistoryEntry(
                event_id=event.id,
                type=HistoryType.TECH_CAPACITY_REJECT,
                actor=actor,
                details=_trim_to_none(details),
                reason=_trim_to_none(reason),
                note=_trim_to_none(note),
            )
        )

    def record_priority_conflict(
        self, event_id: str, actor: str | None, details: str | None
    ) -> None:
        self._write(
            HistoryEntry(
                event_id=event_id,
                type=HistoryType.PRIORITY_CONFLICT,
                actor=actor,
                details=_trim_to_none(details),
            )
        )
