"""Wires repositories, services and bus handlers into one object graph."""

from __future__ import annotations

from venue_booking.config import Settings, get_settings
from venue_booking.domain.bus import EventBus
from venue_booking.domain.handlers import HandlerRegistry
from venue_booking.repos.memory import (
    EventRepository,
    HistoryRepository,
    NotificationOutboxRepository,
    PriorityConflictRepository,
    SpaceRepository,
    TechCapacityConfigRepository,
    UnitOfWork,
)
from venue_booking.services.audit import AuditService
from venue_booking.services.availability import AvailabilityService
from venue_booking.services.booking import BookingService
from venue_booking.services.priority import PriorityConflictService, PriorityPolicy
from venue_booking.services.tech_capacity import TechCapacityService


class Container:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

        self.bus = EventBus()
        self.space_repo = SpaceRepository()
        self.event_repo = EventRepository()
        self.config_repo = TechCapacityConfigRepository()
        self.conflict_repo = PriorityConflictRepository()
        self.history_repo = HistoryRepository()
        self.outbox_repo = NotificationOutboxRepository()
        # Audit history stays outside the transaction snapshot.
        self.uow = UnitOfWork(self.event_repo, self.conflict_repo)

        self.audit = AuditService(self.history_repo)
        self.availability = AvailabilityService(self.event_repo, self.space_repo)
        self.tech_capacity = TechCapacityService(
            self.event_repo, self.config_repo, self.settings
        )
        self.policy = PriorityPolicy()
        self.priority_conflicts = PriorityConflictService(
            conflict_repo=self.conflict_repo,
            event_repo=self.event_repo,
            space_repo=self.space_repo,
            availability=self.availability,
            tech_capacity=self.tech_capacity,
            audit=self.audit,
            bus=self.bus,
            uow=self.uow,
        )
        self.booking = BookingService(
            event_repo=self.event_repo,
            space_repo=self.space_repo,
            availability=self.availability,
            tech_capacity=self.tech_capacity,
            priority_conflicts=self.priority_conflicts,
            audit=self.audit,
            uow=self.uow,
            policy=self.policy,
        )
        self.handlers = HandlerRegistry(
            bus=self.bus, audit=self.audit, outbox=self.outbox_repo
        )

    def reset(self) -> None:
        """Empty every repository."""
        for repo in (
            self.space_repo,
            self.event_repo,
            self.config_repo,
            self.conflict_repo,
        ):
            repo._store.clear()
        self.history_repo._entries.clear()
        self.outbox_repo._items.clear()
