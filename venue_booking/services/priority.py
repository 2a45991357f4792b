"""Priority-conflict workflow: register displaced bookings, apply decisions."""

from __future__ import annotations

import datetime as dt
import logging
from datetime import datetime, timezone

from venue_booking.domain.bus import EventBus
from venue_booking.domain.errors import (
    AlreadyClosedError,
    AvailabilityConflictError,
    DomainValidationError,
    NotFoundError,
    TechCapacityExceededError,
)
from venue_booking.domain.events import PriorityConflictClosed, PriorityConflictCreated
from venue_booking.domain.models import (
    AvailabilityQuery,
    Event,
    Priority,
    PriorityConflict,
    PriorityConflictDecision,
    PriorityConflictDecisionRequest,
    PriorityConflictStatus,
)
from venue_booking.repos.memory import (
    EventRepository,
    PriorityConflictRepository,
    SpaceRepository,
    UnitOfWork,
)
from venue_booking.services.audit import AuditService, schedule_details
from venue_booking.services.availability import AvailabilityService
from venue_booking.services.tech_capacity import TechCapacityService

logger = logging.getLogger(__name__)

HIGH_PRIORITY_AREAS = frozenset({"rectorado"})


def build_conflict_code(date: dt.date, sequence: int) -> str:
    return f"PRIO-{date.strftime('%Y%m%d')}-{sequence:05d}"


def _trim_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class PriorityPolicy:
    def derive_priority(self, requesting_area: str | None, requested: Priority | None) -> Priority:
        if requesting_area and requesting_area.strip().lower() in HIGH_PRIORITY_AREAS:
            return Priority.HIGH
        return requested or Priority.MEDIUM

    def is_higher(self, candidate: Priority | None, other: Priority | None) -> bool:
        if candidate is None or other is None:
            return False
        return candidate.rank > other.rank


class PriorityConflictService:
    def __init__(
        self,
        conflict_repo: PriorityConflictRepository,
        event_repo: EventRepository,
        space_repo: SpaceRepository,
        availability: AvailabilityService,
        tech_capacity: TechCapacityService,
        audit: AuditService,
        bus: EventBus,
        uow: UnitOfWork,
    ) -> None:
        self.conflict_repo = conflict_repo
        self.event_repo = event_repo
        self.space_repo = space_repo
        self.availability = availability
        self.tech_capacity = tech_capacity
        self.audit = audit
        self.bus = bus
        self.uow = uow

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_conflicts(
        self,
        high_event: Event,
        displaced_events: list[Event],
        initiator: str | None,
    ) -> list[PriorityConflict]:
        """Open one conflict per displaced event and flag it for rebooking.

        Events already tracked by an OPEN conflict for *high_event* are only
        re-flagged. Returns every OPEN conflict of *high_event*.
        """
        if not displaced_events:
            return self.get_open_conflicts(high_event.id)

        created: list[PriorityConflict] = []
        with self.uow.transaction():
            open_conflicts = self.conflict_repo.list_by_high_event(
                high_event.id, PriorityConflictStatus.OPEN
            )
            registered = {c.displaced_event_id for c in open_conflicts}
            sequences: dict[dt.date, int] = {}

            for displaced in displaced_events:
                displaced.requires_rebooking = True
                displaced.updated_at = datetime.now(timezone.utc)
                self.event_repo.add(displaced)
                if displaced.id in registered:
                    continue

                conflict_date = high_event.date or displaced.date or dt.date.today()
                if conflict_date not in sequences:
                    sequences[conflict_date] = self.conflict_repo.count_by_date(conflict_date)
                sequences[conflict_date] += 1

                conflict = PriorityConflict(
                    conflict_code=build_conflict_code(conflict_date, sequences[conflict_date]),
                    high_event_id=high_event.id,
                    displaced_event_id=displaced.id,
                    space_id=self._resolve_space_id(high_event, displaced),
                    date=conflict_date,
                    from_time=high_event.schedule_from or displaced.schedule_from,
                    to_time=high_event.schedule_to or displaced.schedule_to,
                    created_by=initiator,
                )
                self.conflict_repo.add(conflict)
                open_conflicts.append(conflict)
                registered.add(displaced.id)
                created.append(conflict)

        for conflict in created:
            logger.info(
                "Opened priority conflict %s: event %s displaced by %s",
                conflict.conflict_code,
                conflict.displaced_event_id,
                conflict.high_event_id,
            )
        self.bus.publish_all(
            PriorityConflictCreated(
                conflict_code=conflict.conflict_code,
                high_event_id=conflict.high_event_id,
                displaced_event_id=conflict.displaced_event_id,
                space_id=conflict.space_id,
                date=conflict.date,
                from_time=conflict.from_time,
                to_time=conflict.to_time,
                initiated_by=initiator,
            )
            for conflict in created
        )
        return open_conflicts

    def get_open_conflicts(self, high_event_id: str) -> list[PriorityConflict]:
        return self.conflict_repo.list_by_high_event(high_event_id, PriorityConflictStatus.OPEN)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def apply_decision(self, request: PriorityConflictDecisionRequest) -> PriorityConflict:
        """Close a conflict, either keeping the displaced event or moving it.

        The event change and the conflict closure commit together or not at all.
        """
        decider = request.decider_user_id
        with self.uow.transaction():
            conflict = self.conflict_repo.get_by_code(request.conflict_id)
            if conflict is None:
                raise NotFoundError("Conflict not found")
            if conflict.status == PriorityConflictStatus.CLOSED:
                raise AlreadyClosedError()

            displaced = self.event_repo.get(conflict.displaced_event_id)
            if displaced is None:
                raise NotFoundError("Displaced event not found")

            if request.decision == PriorityConflictDecision.REBOOK_OTHER:
                self._apply_rebooking(request, displaced)
            else:
                displaced.requires_rebooking = False
                displaced.last_modified_by = decider
                displaced.updated_at = datetime.now(timezone.utc)
                self.event_repo.add(displaced)

            conflict.status = PriorityConflictStatus.CLOSED
            conflict.decision = request.decision
            conflict.decision_by = decider
            conflict.closed_at = datetime.now(timezone.utc)
            conflict.reason = _trim_to_none(request.reason)
            self.conflict_repo.add(conflict)

        logger.info(
            "Closed priority conflict %s with %s by %s",
            conflict.conflict_code,
            conflict.decision,
            decider,
        )
        self.bus.publish(
            PriorityConflictClosed(
                conflict_code=conflict.conflict_code,
                displaced_event_id=conflict.displaced_event_id,
                decision=conflict.decision,
                decided_by=decider,
            )
        )
        return conflict

    def _apply_rebooking(self, request: PriorityConflictDecisionRequest, displaced: Event) -> None:
        target = request.target
        decider = request.decider_user_id
        if target is None:
            raise DomainValidationError("Target is required for REBOOK_OTHER decisions")
        space = self.space_repo.get(target.space_id)
        if space is None:
            raise DomainValidationError("Target space not found")
        if not space.active:
            raise DomainValidationError("Target space is inactive")
        if target.schedule_to <= target.schedule_from:
            raise DomainValidationError("target.to must be after target.from")

        result = self.availability.check_availability(
            AvailabilityQuery(
                date=target.date,
                space_id=space.id,
                schedule_from=target.schedule_from,
                schedule_to=target.schedule_to,
                buffer_before_min=displaced.buffer_before_min,
                buffer_after_min=displaced.buffer_after_min,
                ignore_event_id=displaced.id,
            )
        )
        details = schedule_details(target.date, target.schedule_from, target.schedule_to)
        if not result.available:
            self.audit.record_space_conflict(
                displaced, decider, details, reason="Rebooking target is not available"
            )
            raise AvailabilityConflictError(result)

        if displaced.requires_tech and not self.tech_capacity.has_capacity(
            target.date,
            target.schedule_from,
            target.schedule_to,
            displaced.buffer_before_min,
            displaced.buffer_after_min,
            displaced.tech_support_mode,
            displaced.id,
        ):
            self.audit.record_tech_capacity_reject(
                displaced, decider, details, reason="Rebooking target exceeds tech capacity"
            )
            raise TechCapacityExceededError(
                "No technical capacity available for the requested range"
            )

        displaced.date = target.date
        displaced.schedule_from = target.schedule_from
        displaced.schedule_to = target.schedule_to
        displaced.space_id = space.id
        displaced.free_location = None
        displaced.requires_rebooking = False
        displaced.last_modified_by = decider
        displaced.updated_at = datetime.now(timezone.utc)
        self.event_repo.add(displaced)

        self.audit.record_schedule_change(
            displaced, decider, displaced.date, displaced.schedule_from, displaced.schedule_to
        )

    @staticmethod
    def _resolve_space_id(high_event: Event, displaced: Event) -> str:
        space_id = high_event.space_id or displaced.space_id
        if space_id is None:
            raise DomainValidationError("Space information is required to register conflict")
        return space_id
