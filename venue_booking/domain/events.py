"""Domain events emitted by the priority-conflict workflow."""

from __future__ import annotations

import datetime as dt
from datetime import time

from pydantic import BaseModel

from venue_booking.domain.models import PriorityConflictDecision


class PriorityConflictCreated(BaseModel):
    """Fired when a lower-priority event is displaced by a higher-priority one."""

    conflict_code: str
    high_event_id: str
    displaced_event_id: str
    space_id: str
    date: dt.date
    from_time: time | None = None
    to_time: time | None = None
    initiated_by: str | None = None


class PriorityConflictClosed(BaseModel):
    """Fired after a decision has been applied to a conflict."""

    conflict_code: str
    displaced_event_id: str
    decision: PriorityConflictDecision
    decided_by: str
