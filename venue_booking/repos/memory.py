"""In-memory repositories and the unit of work that makes writes atomic."""

from __future__ import annotations

import datetime as dt
import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from pydantic import BaseModel

from venue_booking.domain.models import (
    Event,
    HistoryEntry,
    Notification,
    PriorityConflict,
    PriorityConflictStatus,
    Space,
    Status,
    TechCapacityConfig,
)

logger = logging.getLogger(__name__)


class _DictRepository:
    """Dict-backed store keyed by id, with snapshot/restore for transactions."""

    def __init__(self) -> None:
        self._store: dict[str, BaseModel] = {}

    def add(self, item: BaseModel) -> None:
        self._store[item.id] = item

    def _values(self) -> list:
        return list(self._store.values())

    # Copies the whole store, so each transaction (nested ones included)
    # costs time and memory proportional to the store size.
    def snapshot(self) -> dict[str, BaseModel]:
        return {key: item.model_copy(deep=True) for key, item in self._store.items()}

    def restore(self, snapshot: dict[str, BaseModel]) -> None:
        """Roll the store back to *snapshot*, keeping live object identity."""
        for key in list(self._store):
            if key not in snapshot:
                del self._store[key]
        for key, saved in snapshot.items():
            live = self._store.get(key)
            if live is None:
                self._store[key] = saved
                continue
            for name in type(saved).model_fields:
                setattr(live, name, getattr(saved, name))


class SpaceRepository(_DictRepository):
    def get(self, space_id: str) -> Space | None:
        return self._store.get(space_id)

    def get_active(self, space_id: str | None) -> Space | None:
        space = self._store.get(space_id) if space_id is not None else None
        if space is None or not space.active:
            return None
        return space


class EventRepository(_DictRepository):
    def get(self, event_id: str) -> Event | None:
        return self._store.get(event_id)

    def list_all(self) -> list[Event]:
        return self._values()

    def find_conflicting_events(
        self,
        date: dt.date,
        space_id: str,
        statuses: Iterable[Status],
        ignore_event_id: str | None = None,
    ) -> list[Event]:
        """Active events at *space_id* on *date* whose status is in *statuses*."""
        statuses = set(statuses)
        return [
            e
            for e in self._store.values()
            if e.active
            and e.date == date
            and e.space_id == space_id
            and e.status in statuses
            and e.id != ignore_event_id
        ]

    def find_tech_events_for_date(
        self,
        date: dt.date,
        statuses: Iterable[Status],
        ignore_event_id: str | None = None,
    ) -> list[Event]:
        statuses = set(statuses)
        return [
            e
            for e in self._store.values()
            if e.active
            and e.requires_tech
            and e.date == date
            and e.status in statuses
            and e.id != ignore_event_id
        ]


class TechCapacityConfigRepository(_DictRepository):
    def find_first_active(self) -> TechCapacityConfig | None:
        return next((c for c in self._store.values() if c.active), None)


class PriorityConflictRepository(_DictRepository):
    def get_by_code(self, code: str) -> PriorityConflict | None:
        return next((c for c in self._store.values() if c.conflict_code == code), None)

    def list_by_high_event(
        self, high_event_id: str, status: PriorityConflictStatus
    ) -> list[PriorityConflict]:
        return sorted(
            (
                c
                for c in self._store.values()
                if c.high_event_id == high_event_id and c.status == status
            ),
            key=lambda c: c.conflict_code,
        )

    def count_by_date(self, date: dt.date) -> int:
        return sum(1 for c in self._store.values() if c.date == date)


class HistoryRepository:
    """Append-only list of audit entries."""

    def __init__(self) -> None:
        self._entries: list[HistoryEntry] = []

    def add(self, entry: HistoryEntry) -> None:
        self._entries.append(entry)

    def list_for_event(self, event_id: str) -> list[HistoryEntry]:
        return sorted(
            [e for e in self._entries if e.event_id == event_id],
            key=lambda e: e.at,
        )


class NotificationOutboxRepository:
    """List-backed outbox drained by the notification subsystem."""

    def __init__(self) -> None:
        self._items: list[Notification] = []

    def add(self, item: Notification) -> None:
        self._items.append(item)

    def list_pending(self) -> list[Notification]:
        return [n for n in self._items if not n.delivered]

    def mark_delivered(self, notification_id: str) -> None:
        for item in self._items:
            if item.id == notification_id:
                item.delivered = True
                return


class UnitOfWork:
    """Makes a block of repository writes all-or-nothing.

    Repositories are snapshotted on entry and restored if the block raises.
    Transactions are serialized on a process-wide lock so two decisions
    cannot both validate the same slot before either commits.
    """

    _lock = threading.RLock()

    def __init__(self, *repos: _DictRepository) -> None:
        self._repos = repos

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshots = [repo.snapshot() for repo in self._repos]
            try:
                yield
            except BaseException:
                logger.debug("Rolling back transaction")
                for repo, snapshot in zip(self._repos, snapshots):
                    repo.restore(snapshot)
                raise
