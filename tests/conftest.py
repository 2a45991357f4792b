"""Shared fixtures: a freshly wired container per test."""

from __future__ import annotations

import pytest

from venue_booking.config import Settings
from venue_booking.container import Container


@pytest.fixture()
def env() -> Container:
    """Fresh repos, services and bus handlers for each test."""
    return Container(Settings())
