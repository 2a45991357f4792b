"""Domain event handlers, wired up at application startup."""

from __future__ import annotations

import logging

from venue_booking.domain.bus import EventBus
from venue_booking.domain.events import PriorityConflictClosed, PriorityConflictCreated
from venue_booking.domain.models import Notification
from venue_booking.repos.memory import NotificationOutboxRepository
from venue_booking.services.audit import AuditService, schedule_details

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Wires domain-event handlers to the bus."""

    def __init__(
        self,
        bus: EventBus,
        audit: AuditService,
        outbox: NotificationOutboxRepository,
    ) -> None:
        self.bus = bus
        self.audit = audit
        self.outbox = outbox
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(PriorityConflictCreated, self.on_conflict_created)
        self.bus.subscribe(PriorityConflictClosed, self.on_conflict_closed)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_conflict_created(self, event: PriorityConflictCreated) -> None:
        details = schedule_details(event.date, event.from_time, event.to_time)

        # 1. History on the displaced event
        self.audit.record_priority_conflict(
            event.displaced_event_id,
            event.initiated_by,
            f"{event.conflict_code} | {details}" if details else event.conflict_code,
        )

        # 2. Queue a notification for the alerting subsystem
        self.outbox.add(
            Notification(
                topic="priority_conflict.created",
                payload=event.model_dump(mode="json"),
            )
        )
        logger.info("Queued notification for conflict %s", event.conflict_code)

    def on_conflict_closed(self, event: PriorityConflictClosed) -> None:
        self.outbox.add(
            Notification(
                topic="priority_conflict.closed",
                payload=event.model_dump(mode="json"),
            )
        )
