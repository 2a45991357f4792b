"""Booking orchestration: create requests and move them through statuses.

Every request passes the availability check first and the tech capacity
check second; confirming a high-priority booking over lower-priority ones
displaces them into priority conflicts.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from venue_booking.domain.errors import (
    AvailabilityConflictError,
    DomainValidationError,
    NotFoundError,
    PriorityTieError,
    TechCapacityExceededError,
)
from venue_booking.domain.models import (
    AvailabilityQuery,
    AvailabilityResult,
    ChangeStatusRequest,
    CreateEventRequest,
    Event,
    Priority,
    Status,
    StatusChangeResponse,
)
from venue_booking.repos.memory import EventRepository, SpaceRepository, UnitOfWork
from venue_booking.services.audit import AuditService, schedule_details
from venue_booking.services.availability import FREE_LOCATION_REASON, AvailabilityService
from venue_booking.services.priority import PriorityConflictService, PriorityPolicy
from venue_booking.services.tech_capacity import TechCapacityService

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[Status, tuple[Status, ...]] = {
    Status.SOLICITADO: (Status.EN_REVISION,),
    Status.EN_REVISION: (Status.RESERVADO, Status.RECHAZADO, Status.APROBADO),
    Status.RESERVADO: (Status.APROBADO, Status.RECHAZADO, Status.EN_REVISION),
    Status.APROBADO: (Status.EN_REVISION,),
    Status.RECHAZADO: (),
}

# Statuses whose slot is confirmed; reverting from them is a reprogramming.
CONFIRMED_STATUSES = frozenset({Status.RESERVADO, Status.APROBADO})


class BookingService:
    def __init__(
        self,
        event_repo: EventRepository,
        space_repo: SpaceRepository,
        availability: AvailabilityService,
        tech_capacity: TechCapacityService,
        priority_conflicts: PriorityConflictService,
        audit: AuditService,
        uow: UnitOfWork,
        policy: PriorityPolicy | None = None,
    ) -> None:
        self.event_repo = event_repo
        self.space_repo = space_repo
        self.availability = availability
        self.tech_capacity = tech_capacity
        self.priority_conflicts = priority_conflicts
        self.audit = audit
        self.uow = uow
        self.policy = policy or PriorityPolicy()

    def create_event(self, request: CreateEventRequest, actor: str | None) -> Event:
        before, after = request.buffer_before_min, request.buffer_after_min
        if request.space_id is not None:
            space = self.space_repo.get_active(request.space_id)
            if space is None:
                raise NotFoundError("Space not found")
            before = space.default_buffer_before_min if before is None else before
            after = space.default_buffer_after_min if after is None else after

        event = Event(
            name=request.name,
            date=request.date,
            schedule_from=request.schedule_from,
            schedule_to=request.schedule_to,
            priority=self.policy.derive_priority(request.requesting_area, request.priority),
            requesting_area=request.requesting_area,
            space_id=request.space_id,
            free_location=request.free_location,
            buffer_before_min=before or 0,
            buffer_after_min=after or 0,
            internal=request.internal,
            requires_tech=request.requires_tech,
            tech_support_mode=request.tech_support_mode,
            created_by=actor,
        )

        with self.uow.transaction():
            # High-priority requests may be filed over existing bookings; the
            # overlap is resolved by displacement when they are confirmed.
            result = self._check_slot(event)
            if not result.available and event.priority != Priority.HIGH:
                raise AvailabilityConflictError(result)
            if not self._tech_fits(event):
                raise TechCapacityExceededError(
                    "No technical capacity available for the requested range"
                )
            self.event_repo.add(event)
        logger.info("Created booking request %s (%s)", event.id, event.priority)
        return event

    def change_status(
        self, event_id: str, request: ChangeStatusRequest, actor: str | None
    ) -> StatusChangeResponse:
        event = self.event_repo.get(event_id)
        if event is None:
            raise NotFoundError("Event not found")
        if not event.active:
            raise DomainValidationError("EVENT_INACTIVE")

        previous = event.status
        target = request.to
        if target not in ALLOWED_TRANSITIONS.get(previous, ()):
            raise DomainValidationError(f"Transition from {previous} to {target} is not allowed")

        conflict_codes: list[str] = []
        with self.uow.transaction():
            displaced: list[Event] = []
            if target in CONFIRMED_STATUSES:
                displaced = self._ensure_availability(event, actor)
                self._ensure_tech_capacity(event, actor)

            event.status = target
            event.last_modified_by = actor
            event.updated_at = datetime.now(timezone.utc)
            self.event_repo.add(event)

            if target == Status.EN_REVISION and previous in CONFIRMED_STATUSES:
                self.audit.record_reprogram(event, actor, request.reason, request.note)
            self.audit.record_status_change(
                event, actor, previous, target, request.reason, request.note
            )

            if displaced:
                conflicts = self.priority_conflicts.register_conflicts(event, displaced, actor)
                conflict_codes = [c.conflict_code for c in conflicts]

        logger.info("Event %s moved %s -> %s", event.id, previous, target)
        return StatusChangeResponse(
            event_id=event.id, status=event.status, conflict_codes=conflict_codes
        )

    # ------------------------------------------------------------------
    # Validation steps
    # ------------------------------------------------------------------

    def _check_slot(self, event: Event) -> AvailabilityResult:
        if event.space_id is None or not event.has_schedule:
            return AvailabilityResult(available=True, skipped=True, reason=FREE_LOCATION_REASON)
        return self.availability.check_availability(
            AvailabilityQuery(
                date=event.date,
                space_id=event.space_id,
                schedule_from=event.schedule_from,
                schedule_to=event.schedule_to,
                buffer_before_min=event.buffer_before_min,
                buffer_after_min=event.buffer_after_min,
                ignore_event_id=event.id,
            )
        )

    def _tech_fits(self, event: Event) -> bool:
        if not event.requires_tech:
            return True
        return self.tech_capacity.has_capacity(
            event.date,
            event.schedule_from,
            event.schedule_to,
            event.buffer_before_min,
            event.buffer_after_min,
            event.tech_support_mode,
            event.id,
        )

    def _ensure_availability(self, event: Event, actor: str | None) -> list[Event]:
        """Return the events *event* displaces, or raise if it cannot take the slot."""
        result = self._check_slot(event)
        if result.available:
            return []
        if event.space_id is None or event.priority != Priority.HIGH:
            self.audit.record_space_conflict(
                event,
                actor,
                schedule_details(event.date, event.schedule_from, event.schedule_to),
                reason=f"Overlaps {len(result.conflicts)} booking(s)",
            )
            raise AvailabilityConflictError(result)

        overlapping = [
            self.event_repo.get(item.event_id)
            for item in result.conflicts
            if item.event_id != event.id
        ]
        overlapping = [e for e in overlapping if e is not None]
        if any(e.priority == Priority.HIGH for e in overlapping):
            raise PriorityTieError()
        return [e for e in overlapping if self.policy.is_higher(event.priority, e.priority)]

    def _ensure_tech_capacity(self, event: Event, actor: str | None) -> None:
        if self._tech_fits(event):
            return
        self.audit.record_tech_capacity_reject(
            event,
            actor,
            schedule_details(event.date, event.schedule_from, event.schedule_to),
        )
        raise TechCapacityExceededError("No technical capacity available for the requested range")
