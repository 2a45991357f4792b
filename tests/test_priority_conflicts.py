"""Tests for priority-conflict registration and decisions."""

from __future__ import annotations

import threading
import time as time_module
from datetime import date, time

import pytest

from venue_booking.domain.errors import (
    AlreadyClosedError,
    AvailabilityConflictError,
    DomainValidationError,
    NotFoundError,
    TechCapacityExceededError,
)
from venue_booking.domain.events import PriorityConflictClosed, PriorityConflictCreated
from venue_booking.domain.models import (
    Event,
    HistoryType,
    Priority,
    PriorityConflictDecision,
    PriorityConflictDecisionRequest,
    PriorityConflictStatus,
    RebookTarget,
    Space,
    Status,
    TechCapacityConfig,
    TechSupportMode,
)
from venue_booking.services.priority import PriorityPolicy, build_conflict_code

_DAY = date(2026, 5, 4)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _space(env, name: str = "Aula Magna", **overrides) -> Space:
    space = Space(name=name, **overrides)
    env.space_repo.add(space)
    return space


def _event(env, space: Space, start: time, end: time, **overrides) -> Event:
    defaults = dict(
        name="Seminar",
        date=_DAY,
        schedule_from=start,
        schedule_to=end,
        space_id=space.id,
        status=Status.RESERVADO,
        priority=Priority.MEDIUM,
    )
    defaults.update(overrides)
    event = Event(**defaults)
    env.event_repo.add(event)
    return event


def _displacement(env, count: int = 1):
    """A high-priority event plus *count* displaced bookings, registered."""
    space = _space(env)
    high = _event(
        env, space, time(10, 0), time(12, 0), name="Graduation", priority=Priority.HIGH
    )
    displaced = [
        _event(env, space, time(10, 0), time(11, 0), name=f"Class {i}") for i in range(count)
    ]
    conflicts = env.priority_conflicts.register_conflicts(high, displaced, "rector")
    return space, high, displaced, conflicts


def _decide(conflict_id: str, decision: PriorityConflictDecision, **overrides):
    return PriorityConflictDecisionRequest(
        conflict_id=conflict_id, decider_user_id="coordinator", decision=decision, **overrides
    )


def _rebook_to(conflict_id: str, space_id: str, start: time = time(14, 0), end: time = time(15, 0)):
    return _decide(
        conflict_id,
        PriorityConflictDecision.REBOOK_OTHER,
        target=RebookTarget(date=_DAY, schedule_from=start, schedule_to=end, space_id=space_id),
    )


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def test_requesting_area_forces_high_priority():
    policy = PriorityPolicy()
    assert policy.derive_priority("Rectorado", Priority.LOW) == Priority.HIGH
    assert policy.derive_priority("  rectorado ", None) == Priority.HIGH


def test_requested_priority_otherwise_defaults_to_medium():
    policy = PriorityPolicy()
    assert policy.derive_priority("Finance", Priority.LOW) == Priority.LOW
    assert policy.derive_priority(None, None) == Priority.MEDIUM


def test_is_higher_compares_rank():
    policy = PriorityPolicy()
    assert policy.is_higher(Priority.HIGH, Priority.MEDIUM)
    assert policy.is_higher(Priority.MEDIUM, Priority.LOW)
    assert not policy.is_higher(Priority.MEDIUM, Priority.MEDIUM)
    assert not policy.is_higher(Priority.LOW, Priority.HIGH)
    assert not policy.is_higher(None, Priority.LOW)


def test_conflict_code_format():
    assert build_conflict_code(date(2026, 1, 9), 42) == "PRIO-20260109-00042"


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def test_register_assigns_sequential_codes(env):
    _, high, displaced, conflicts = _displacement(env, count=3)

    assert [c.conflict_code for c in conflicts] == [
        "PRIO-20260504-00001",
        "PRIO-20260504-00002",
        "PRIO-20260504-00003",
    ]
    assert [c.displaced_event_id for c in conflicts] == [e.id for e in displaced]
    assert all(c.status == PriorityConflictStatus.OPEN for c in conflicts)
    assert all(c.high_event_id == high.id for c in conflicts)
    assert all(e.requires_rebooking for e in displaced)


def test_conflict_keeps_the_high_event_slot(env):
    space, high, _, conflicts = _displacement(env)
    conflict = conflicts[0]
    assert conflict.space_id == space.id
    assert conflict.from_time == time(10, 0)
    assert conflict.to_time == time(12, 0)
    assert conflict.created_by == "rector"


def test_sequence_continues_across_high_events(env):
    space, _, _, _ = _displacement(env, count=2)
    other_high = _event(
        env, space, time(15, 0), time(16, 0), name="Visit", priority=Priority.HIGH
    )
    victim = _event(env, space, time(15, 0), time(16, 0))

    conflicts = env.priority_conflicts.register_conflicts(other_high, [victim], "rector")

    assert [c.conflict_code for c in conflicts] == ["PRIO-20260504-00003"]


def test_register_is_idempotent(env):
    _, high, displaced, first = _displacement(env, count=2)

    again = env.priority_conflicts.register_conflicts(high, displaced, "rector")

    assert [c.conflict_code for c in again] == [c.conflict_code for c in first]
    assert len(env.conflict_repo._store) == 2
    assert len(env.outbox_repo.list_pending()) == 2


def test_register_nothing_returns_existing_open_conflicts(env):
    _, high, _, first = _displacement(env)
    assert env.priority_conflicts.register_conflicts(high, [], "rector") == first


def test_register_requires_a_space(env):
    high = Event(name="Open air", date=_DAY, free_location="Lawn", priority=Priority.HIGH)
    other = Event(name="Picnic", date=_DAY, free_location="Lawn")
    env.event_repo.add(high)
    env.event_repo.add(other)

    with pytest.raises(DomainValidationError):
        env.priority_conflicts.register_conflicts(high, [other], "rector")
    assert env.conflict_repo._store == {}
    assert not other.requires_rebooking


def test_registration_audits_and_notifies(env):
    _, _, displaced, conflicts = _displacement(env)

    history = env.history_repo.list_for_event(displaced[0].id)
    assert [h.type for h in history] == [HistoryType.PRIORITY_CONFLICT]
    assert history[0].details.startswith(conflicts[0].conflict_code)
    assert "Date 2026-05-04" in history[0].details

    pending = env.outbox_repo.list_pending()
    assert [n.topic for n in pending] == ["priority_conflict.created"]
    assert pending[0].payload["conflict_code"] == conflicts[0].conflict_code


def test_get_open_conflicts_lists_only_open(env):
    _, high, _, conflicts = _displacement(env, count=2)
    env.priority_conflicts.apply_decision(
        _decide(conflicts[0].conflict_code, PriorityConflictDecision.KEEP)
    )

    open_conflicts = env.priority_conflicts.get_open_conflicts(high.id)

    assert [c.conflict_code for c in open_conflicts] == [conflicts[1].conflict_code]


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


def test_keep_closes_and_clears_the_flag(env):
    _, _, displaced, conflicts = _displacement(env)

    closed = env.priority_conflicts.apply_decision(
        _decide(conflicts[0].conflict_code, PriorityConflictDecision.KEEP, reason="  ok  ")
    )

    assert closed.status == PriorityConflictStatus.CLOSED
    assert closed.decision == PriorityConflictDecision.KEEP
    assert closed.decision_by == "coordinator"
    assert closed.closed_at is not None
    assert closed.reason == "ok"
    assert not displaced[0].requires_rebooking
    assert displaced[0].schedule_from == time(10, 0)
    topics = [n.topic for n in env.outbox_repo.list_pending()]
    assert topics[-1] == "priority_conflict.closed"


def test_blank_reason_is_stored_as_none(env):
    _, _, _, conflicts = _displacement(env)
    closed = env.priority_conflicts.apply_decision(
        _decide(conflicts[0].conflict_code, PriorityConflictDecision.KEEP, reason="   ")
    )
    assert closed.reason is None


def test_deciding_twice_raises_already_closed(env):
    _, _, _, conflicts = _displacement(env)
    request = _decide(conflicts[0].conflict_code, PriorityConflictDecision.KEEP)
    env.priority_conflicts.apply_decision(request)

    with pytest.raises(AlreadyClosedError):
        env.priority_conflicts.apply_decision(request)


def test_unknown_conflict_raises_not_found(env):
    with pytest.raises(NotFoundError):
        env.priority_conflicts.apply_decision(
            _decide("PRIO-20260504-99999", PriorityConflictDecision.KEEP)
        )


def test_rebook_moves_the_displaced_event(env):
    _, _, displaced, conflicts = _displacement(env)
    other = _space(env, name="Sala B")
    event = displaced[0]

    closed = env.priority_conflicts.apply_decision(
        _decide(
            conflicts[0].conflict_code,
            PriorityConflictDecision.REBOOK_OTHER,
            target=RebookTarget(
                date=date(2026, 5, 5),
                schedule_from=time(14, 0),
                schedule_to=time(15, 0),
                space_id=other.id,
            ),
        )
    )

    assert closed.status == PriorityConflictStatus.CLOSED
    assert closed.decision == PriorityConflictDecision.REBOOK_OTHER
    assert event.space_id == other.id
    assert event.date == date(2026, 5, 5)
    assert (event.schedule_from, event.schedule_to) == (time(14, 0), time(15, 0))
    assert not event.requires_rebooking
    assert event.last_modified_by == "coordinator"

    history = env.history_repo.list_for_event(event.id)
    assert history[-1].type == HistoryType.SCHEDULE_CHANGE
    assert history[-1].details == "Date 2026-05-05 | Time 14:00-15:00"


def test_rebook_into_occupied_slot_changes_nothing(env):
    """A refused rebooking leaves both the event and the conflict untouched."""
    _, _, displaced, conflicts = _displacement(env)
    other = _space(env, name="Sala B")
    _event(env, other, time(14, 0), time(15, 0), name="Already there")
    event = displaced[0]

    with pytest.raises(AvailabilityConflictError) as exc_info:
        env.priority_conflicts.apply_decision(
            _decide(
                conflicts[0].conflict_code,
                PriorityConflictDecision.REBOOK_OTHER,
                target=RebookTarget(
                    date=_DAY,
                    schedule_from=time(14, 30),
                    schedule_to=time(15, 30),
                    space_id=other.id,
                ),
            )
        )

    assert len(exc_info.value.result.conflicts) == 1
    assert event.space_id != other.id
    assert event.schedule_from == time(10, 0)
    assert event.requires_rebooking
    stored = env.conflict_repo.get_by_code(conflicts[0].conflict_code)
    assert stored.status == PriorityConflictStatus.OPEN
    assert stored.decision is None
    types = [h.type for h in env.history_repo.list_for_event(event.id)]
    assert HistoryType.SPACE_CONFLICT in types
    assert HistoryType.SCHEDULE_CHANGE not in types


def test_rebook_checks_tech_capacity(env):
    _, _, displaced, conflicts = _displacement(env)
    event = displaced[0]
    event.requires_tech = True
    event.tech_support_mode = TechSupportMode.ATTENDED
    env.config_repo.add(TechCapacityConfig(default_slots_per_block=1))
    other = _space(env, name="Sala B")
    _event(
        env,
        _space(env, name="Sala C"),
        time(14, 0),
        time(15, 0),
        requires_tech=True,
        tech_support_mode=TechSupportMode.ATTENDED,
    )

    with pytest.raises(TechCapacityExceededError):
        env.priority_conflicts.apply_decision(
            _decide(
                conflicts[0].conflict_code,
                PriorityConflictDecision.REBOOK_OTHER,
                target=RebookTarget(
                    date=_DAY,
                    schedule_from=time(14, 0),
                    schedule_to=time(15, 0),
                    space_id=other.id,
                ),
            )
        )

    assert event.space_id != other.id
    stored = env.conflict_repo.get_by_code(conflicts[0].conflict_code)
    assert stored.status == PriorityConflictStatus.OPEN
    types = [h.type for h in env.history_repo.list_for_event(event.id)]
    assert HistoryType.TECH_CAPACITY_REJECT in types


def test_rebook_requires_a_target(env):
    _, _, _, conflicts = _displacement(env)
    with pytest.raises(DomainValidationError):
        env.priority_conflicts.apply_decision(
            _decide(conflicts[0].conflict_code, PriorityConflictDecision.REBOOK_OTHER)
        )
    stored = env.conflict_repo.get_by_code(conflicts[0].conflict_code)
    assert stored.status == PriorityConflictStatus.OPEN


def test_rebook_into_inactive_space_is_rejected(env):
    _, _, _, conflicts = _displacement(env)
    closed_room = _space(env, name="Closed", active=False)
    with pytest.raises(DomainValidationError) as exc_info:
        env.priority_conflicts.apply_decision(_rebook_to(conflicts[0].conflict_code, closed_room.id))
    assert exc_info.value.message == "Target space is inactive"


def test_rebook_into_unknown_space_is_rejected(env):
    _, _, _, conflicts = _displacement(env)
    with pytest.raises(DomainValidationError) as exc_info:
        env.priority_conflicts.apply_decision(_rebook_to(conflicts[0].conflict_code, "missing"))
    assert exc_info.value.message == "Target space not found"


def test_rebook_with_inverted_range_is_rejected(env):
    _, _, _, conflicts = _displacement(env)
    other = _space(env, name="Sala B")
    with pytest.raises(DomainValidationError):
        env.priority_conflicts.apply_decision(
            _decide(
                conflicts[0].conflict_code,
                PriorityConflictDecision.REBOOK_OTHER,
                target=RebookTarget(
                    date=_DAY,
                    schedule_from=time(15, 0),
                    schedule_to=time(15, 0),
                    space_id=other.id,
                ),
            )
        )


# ---------------------------------------------------------------------------
# Side effects and concurrency
# ---------------------------------------------------------------------------


def _failing_handler(event):
    raise RuntimeError("smtp down")


def test_failing_closed_handler_does_not_fail_the_decision(env):
    """The decision is already committed; a broken subscriber must not report an error."""
    _, _, displaced, conflicts = _displacement(env)
    env.bus.subscribe(PriorityConflictClosed, _failing_handler)

    closed = env.priority_conflicts.apply_decision(
        _decide(conflicts[0].conflict_code, PriorityConflictDecision.KEEP)
    )

    assert closed.status == PriorityConflictStatus.CLOSED
    assert not displaced[0].requires_rebooking
    assert [n.topic for n in env.outbox_repo.list_pending()][-1] == "priority_conflict.closed"


def test_failing_created_handler_still_registers(env):
    space = _space(env)
    high = _event(env, space, time(10, 0), time(12, 0), priority=Priority.HIGH)
    victim = _event(env, space, time(10, 0), time(11, 0))
    env.bus.subscribe(PriorityConflictCreated, _failing_handler)

    conflicts = env.priority_conflicts.register_conflicts(high, [victim], "rector")

    assert [c.conflict_code for c in conflicts] == ["PRIO-20260504-00001"]
    assert victim.requires_rebooking
    assert len(env.outbox_repo.list_pending()) == 1


def test_concurrent_rebookings_into_one_slot_admit_exactly_one(env, monkeypatch):
    """Two decisions racing for the same target slot cannot both succeed."""
    _, _, displaced, conflicts = _displacement(env, count=2)
    target_room = _space(env, name="Sala B")

    check = env.availability.check_availability

    def slow_check(query):
        result = check(query)
        # Widen the gap between validating the slot and committing the move.
        time_module.sleep(0.05)
        return result

    monkeypatch.setattr(env.availability, "check_availability", slow_check)

    barrier = threading.Barrier(2)
    outcomes: list[object] = []

    def decide(conflict_id: str) -> None:
        barrier.wait()
        try:
            outcomes.append(
                env.priority_conflicts.apply_decision(_rebook_to(conflict_id, target_room.id))
            )
        except AvailabilityConflictError as exc:
            outcomes.append(exc)

    threads = [
        threading.Thread(target=decide, args=(c.conflict_code,)) for c in conflicts
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    closed = [o for o in outcomes if not isinstance(o, AvailabilityConflictError)]
    refused = [o for o in outcomes if isinstance(o, AvailabilityConflictError)]
    assert len(closed) == 1
    assert len(refused) == 1
    moved = [e for e in displaced if e.space_id == target_room.id]
    assert len(moved) == 1
