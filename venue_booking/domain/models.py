"""Domain models for the venue booking scheduling engine."""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import datetime, time, timezone
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_BUFFER_MINUTES = 240


class Status(StrEnum):
    SOLICITADO = "SOLICITADO"
    EN_REVISION = "EN_REVISION"
    RESERVADO = "RESERVADO"
    APROBADO = "APROBADO"
    RECHAZADO = "RECHAZADO"


# Statuses that hold a space and consume technical capacity.
BLOCKING_STATUSES = frozenset({Status.EN_REVISION, Status.RESERVADO, Status.APROBADO})


class Priority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return list(Priority).index(self)


class TechSupportMode(StrEnum):
    SETUP_ONLY = "SETUP_ONLY"
    ATTENDED = "ATTENDED"


class PriorityConflictStatus(StrEnum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class PriorityConflictDecision(StrEnum):
    KEEP = "KEEP"
    REBOOK_OTHER = "REBOOK_OTHER"


class HistoryType(StrEnum):
    STATUS = "STATUS"
    SCHEDULE_CHANGE = "SCHEDULE_CHANGE"
    REPROGRAM = "REPROGRAM"
    SPACE_CONFLICT = "SPACE_CONFLICT"
    TECH_CAPACITY_REJECT = "TECH_CAPACITY_REJECT"
    PRIORITY_CONFLICT = "PRIORITY_CONFLICT"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _check_location(space_id: str | None, free_location: str | None) -> None:
    if (space_id is None) == (free_location is None):
        raise ValueError("Either space_id or free_location must be provided, but not both")


def _check_range(start: time | None, end: time | None) -> None:
    if start is not None and end is not None and end <= start:
        raise ValueError("schedule_from must be before schedule_to")


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Space(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    capacity: int | None = None
    default_buffer_before_min: int = Field(default=0, ge=0, le=MAX_BUFFER_MINUTES)
    default_buffer_after_min: int = Field(default=0, ge=0, le=MAX_BUFFER_MINUTES)
    active: bool = True


class Event(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    date: dt.date | None = None
    schedule_from: time | None = None
    schedule_to: time | None = None
    status: Status = Status.SOLICITADO
    priority: Priority = Priority.MEDIUM
    requesting_area: str | None = None
    space_id: str | None = None
    free_location: str | None = None
    buffer_before_min: int = Field(default=0, ge=0, le=MAX_BUFFER_MINUTES)
    buffer_after_min: int = Field(default=0, ge=0, le=MAX_BUFFER_MINUTES)
    internal: bool = False
    requires_tech: bool = False
    tech_support_mode: TechSupportMode = TechSupportMode.SETUP_ONLY
    requires_rebooking: bool = False
    active: bool = True
    created_by: str | None = None
    last_modified_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    normalize_free_location = field_validator("free_location")(_blank_to_none)

    @model_validator(mode="after")
    def _valid_schedule(self) -> Event:
        _check_location(self.space_id, self.free_location)
        _check_range(self.schedule_from, self.schedule_to)
        return self

    @property
    def has_schedule(self) -> bool:
        return (
            self.date is not None
            and self.schedule_from is not None
            and self.schedule_to is not None
        )


class TechCapacityConfig(BaseModel):
    id: str = Field(default_factory=_new_id)
    active: bool = True
    block_minutes: int = Field(default=30, gt=0)
    default_slots_per_block: int = Field(default=10, ge=0)
    timezone: str | None = "UTC"
    notes: str | None = None


class PriorityConflict(BaseModel):
    id: str = Field(default_factory=_new_id)
    conflict_code: str
    high_event_id: str
    displaced_event_id: str
    space_id: str
    date: dt.date
    from_time: time | None = None
    to_time: time | None = None
    status: PriorityConflictStatus = PriorityConflictStatus.OPEN
    decision: PriorityConflictDecision | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    decision_by: str | None = None
    closed_at: datetime | None = None
    reason: str | None = None


class HistoryEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    event_id: str
    type: HistoryType
    actor: str | None = None
    at: datetime = Field(default_factory=_utcnow)
    field: str | None = None
    from_value: str | None = None
    to_value: str | None = None
    details: str | None = None
    reason: str | None = None
    note: str | None = None


class Notification(BaseModel):
    """Outbound message queued for the notification subsystem."""

    id: str = Field(default_factory=_new_id)
    topic: str
    payload: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    delivered: bool = False


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class AvailabilityQuery(BaseModel):
    date: dt.date
    space_id: str | None = None
    free_location: str | None = None
    schedule_from: time
    schedule_to: time
    buffer_before_min: int | None = Field(default=None, ge=0, le=MAX_BUFFER_MINUTES)
    buffer_after_min: int | None = Field(default=None, ge=0, le=MAX_BUFFER_MINUTES)
    ignore_event_id: str | None = None

    normalize_free_location = field_validator("free_location")(_blank_to_none)

    @model_validator(mode="after")
    def _valid_query(self) -> AvailabilityQuery:
        _check_location(self.space_id, self.free_location)
        _check_range(self.schedule_from, self.schedule_to)
        return self


class ConflictItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    status: Status
    title: str
    space_id: str | None
    date: dt.date
    effective_from: str
    effective_to: str
    internal: bool = False
    buffer_before_min: int = 0
    buffer_after_min: int = 0


class AvailabilityResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    available: bool
    skipped: bool = False
    reason: str | None = None
    effective_from: str | None = None
    effective_to: str | None = None
    conflicts: tuple[ConflictItem, ...] = ()

    def to_public(self) -> PublicAvailabilityResult:
        """Strip event identity so the result can be shown to anonymous users."""
        return PublicAvailabilityResult(
            available=self.available,
            skipped=self.skipped,
            reason=self.reason,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            conflicts=[
                PublicConflictItem(
                    status=c.status,
                    effective_from=c.effective_from,
                    effective_to=c.effective_to,
                )
                for c in self.conflicts
            ],
        )


class PublicConflictItem(BaseModel):
    status: Status
    effective_from: str
    effective_to: str


class PublicAvailabilityResult(BaseModel):
    available: bool
    skipped: bool = False
    reason: str | None = None
    effective_from: str | None = None
    effective_to: str | None = None
    conflicts: list[PublicConflictItem] = Field(default_factory=list)


class OccupancyBlock(BaseModel):
    from_label: str
    to_label: str
    status: Status


class SpaceOccupancy(BaseModel):
    space_id: str
    date: dt.date
    blocks: list[OccupancyBlock] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Technical capacity
# ---------------------------------------------------------------------------


class CapacityBlock(BaseModel):
    from_label: str
    to_label: str
    used: int
    available: int


class TechCapacity(BaseModel):
    date: dt.date
    block_minutes: int
    default_slots: int
    blocks: list[CapacityBlock] = Field(default_factory=list)


class TechEvent(BaseModel):
    event_id: str
    name: str
    space_id: str | None = None
    schedule_from: time | None = None
    schedule_to: time | None = None
    tech_support_mode: TechSupportMode
    requesting_area: str | None = None


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class RebookTarget(BaseModel):
    date: dt.date
    schedule_from: time
    schedule_to: time
    space_id: str


class PriorityConflictDecisionRequest(BaseModel):
    conflict_id: str = Field(min_length=1)
    decider_user_id: str = Field(min_length=1)
    decision: PriorityConflictDecision
    target: RebookTarget | None = None
    reason: str | None = None


class PriorityConflictDecisionResponse(BaseModel):
    conflict_id: str
    decision: PriorityConflictDecision | None
    status: PriorityConflictStatus


class ConflictDetail(BaseModel):
    conflict_id: str
    displaced_event_id: str
    space_id: str
    from_time: time | None = None
    to_time: time | None = None
    created_at: datetime
    created_by: str | None = None


class OpenConflictsResponse(BaseModel):
    event_id: str
    conflicts: list[ConflictDetail] = Field(default_factory=list)


class CreateEventRequest(BaseModel):
    name: str = Field(min_length=1)
    date: dt.date
    schedule_from: time
    schedule_to: time
    space_id: str | None = None
    free_location: str | None = None
    requesting_area: str | None = None
    priority: Priority | None = None
    buffer_before_min: int | None = Field(default=None, ge=0, le=MAX_BUFFER_MINUTES)
    buffer_after_min: int | None = Field(default=None, ge=0, le=MAX_BUFFER_MINUTES)
    internal: bool = False
    requires_tech: bool = False
    tech_support_mode: TechSupportMode = TechSupportMode.SETUP_ONLY

    normalize_free_location = field_validator("free_location")(_blank_to_none)

    @model_validator(mode="after")
    def _valid_request(self) -> CreateEventRequest:
        _check_location(self.space_id, self.free_location)
        _check_range(self.schedule_from, self.schedule_to)
        return self


class ChangeStatusRequest(BaseModel):
    to: Status
    reason: str | None = None
    note: str | None = None


class StatusChangeResponse(BaseModel):
    event_id: str
    status: Status
    conflict_codes: list[str] = Field(default_factory=list)
