"""FastAPI application: entry point for the venue booking service."""

from __future__ import annotations

import datetime as dt

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from venue_booking.config import configure_logging
from venue_booking.container import Container
from venue_booking.domain.errors import AvailabilityConflictError, SchedulingError
from venue_booking.domain.models import (
    AvailabilityQuery,
    AvailabilityResult,
    ChangeStatusRequest,
    ConflictDetail,
    CreateEventRequest,
    Event,
    OpenConflictsResponse,
    PriorityConflictDecisionRequest,
    PriorityConflictDecisionResponse,
    PublicAvailabilityResult,
    SpaceOccupancy,
    StatusChangeResponse,
    TechCapacity,
    TechEvent,
)

configure_logging()

app = FastAPI(title="Venue Booking Service")

# ── Singletons (created at import time for simplicity) ────────────────
container = Container()


@app.exception_handler(SchedulingError)
def _scheduling_error(request: Request, exc: SchedulingError) -> JSONResponse:
    body: dict = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, AvailabilityConflictError):
        body["availability"] = exc.result.model_dump(mode="json")
    return JSONResponse(status_code=exc.status_code, content=body)


# ── Availability ──────────────────────────────────────────────────────


@app.post("/api/availability/check", response_model=AvailabilityResult)
def check_availability(query: AvailabilityQuery) -> AvailabilityResult:
    """Check a slot and list every colliding booking."""
    return container.availability.check_availability(query)


@app.post("/public/availability/check", response_model=PublicAvailabilityResult)
def check_availability_public(query: AvailabilityQuery) -> PublicAvailabilityResult:
    """Same check, without event names or ids."""
    return container.availability.check_public(query)


@app.get("/public/spaces/{space_id}/occupancy", response_model=SpaceOccupancy)
def get_space_occupancy(space_id: str, date: dt.date) -> SpaceOccupancy:
    return container.availability.get_space_occupancy(space_id, date)


# ── Technical capacity ────────────────────────────────────────────────


@app.get("/internal/tech/capacity", response_model=TechCapacity)
def get_tech_capacity(date: dt.date) -> TechCapacity:
    return container.tech_capacity.get_capacity(date)


@app.get("/internal/tech/events", response_model=list[TechEvent])
def get_tech_events(date: dt.date) -> list[TechEvent]:
    return container.tech_capacity.get_events(date)


# ── Priority conflicts ────────────────────────────────────────────────


@app.get("/internal/priority/conflicts", response_model=OpenConflictsResponse)
def get_open_conflicts(event_id: str) -> OpenConflictsResponse:
    """Open conflicts raised by the given high-priority event."""
    conflicts = container.priority_conflicts.get_open_conflicts(event_id)
    return OpenConflictsResponse(
        event_id=event_id,
        conflicts=[
            ConflictDetail(
                conflict_id=c.conflict_code,
                displaced_event_id=c.displaced_event_id,
                space_id=c.space_id,
                from_time=c.from_time,
                to_time=c.to_time,
                created_at=c.created_at,
                created_by=c.created_by,
            )
            for c in conflicts
        ],
    )


@app.post(
    "/internal/priority/decisions",
    response_model=PriorityConflictDecisionResponse,
    status_code=201,
)
def decide_conflict(body: PriorityConflictDecisionRequest) -> PriorityConflictDecisionResponse:
    conflict = container.priority_conflicts.apply_decision(body)
    return PriorityConflictDecisionResponse(
        conflict_id=conflict.conflict_code,
        decision=conflict.decision,
        status=conflict.status,
    )


# ── Events ────────────────────────────────────────────────────────────


@app.get("/events", response_model=list[Event])
def list_events() -> list[Event]:
    """Return all stored events."""
    return container.event_repo.list_all()


@app.get("/events/{event_id}", response_model=Event)
def get_event(event_id: str) -> Event:
    """Return a single event by id."""
    event = container.event_repo.get(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@app.post("/events", response_model=Event, status_code=201)
def create_event(
    body: CreateEventRequest, x_user_id: str | None = Header(default=None)
) -> Event:
    """File a booking request after validating the slot."""
    return container.booking.create_event(body, x_user_id)


@app.post("/events/{event_id}/status", response_model=StatusChangeResponse)
def change_event_status(
    event_id: str,
    body: ChangeStatusRequest,
    x_user_id: str | None = Header(default=None),
) -> StatusChangeResponse:
    return container.booking.change_status(event_id, body, x_user_id)
