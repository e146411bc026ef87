# tests/conftest.py
"""Pytest configuration and fixtures"""
import os

# Settings are read at import time; pin a dev, in-memory configuration
os.environ["APP_ENV"] = "dev"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ.pop("IDENTITY_SIGNING_SECRET", None)
os.environ.pop("ADMIN_TOKEN", None)
os.environ.pop("METRICS_TOKEN", None)

from datetime import datetime, timezone

import pytest

from caredispatch.core.dispatch.domain import (
    ActivationState,
    Coordinate,
    Volunteer,
    VolunteerCategory,
)
from caredispatch.infra.memory_store import InMemoryDispatchStore, InMemoryVolunteerDirectory
from caredispatch.infra.metrics import get_metrics_collector


def _make_volunteer(
    volunteer_id: str,
    category: VolunteerCategory,
    lat: float,
    lon: float,
    state: ActivationState = ActivationState.ACTIVE,
) -> Volunteer:
    return Volunteer(
        id=volunteer_id,
        category=category,
        activation_state=state,
        location=Coordinate(lat, lon),
        name=f"Volunteer {volunteer_id}",
    )


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield


@pytest.fixture
def fixed_now():
    return datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def volunteers():
    """One ACTIVE volunteer per category near (12, 12), plus noise."""
    return [
        _make_volunteer("legal-a", VolunteerCategory.LEGAL, 12.00, 12.00),
        _make_volunteer("legal-b", VolunteerCategory.LEGAL, 13.00, 13.00),
        _make_volunteer("police-a", VolunteerCategory.POLICE, 12.50, 12.50),
        _make_volunteer("mental-a", VolunteerCategory.MENTAL, 11.90, 12.10),
        _make_volunteer("mental-banned", VolunteerCategory.MENTAL, 12.01, 12.01, ActivationState.BANNED),
        _make_volunteer("legal-pending", VolunteerCategory.LEGAL, 12.01, 12.01, ActivationState.PENDING),
    ]


@pytest.fixture
def directory(volunteers):
    return InMemoryVolunteerDirectory(volunteers)


@pytest.fixture
def store():
    return InMemoryDispatchStore()


@pytest.fixture
def make_volunteer():
    """Factory for Volunteer objects: make_volunteer(id, category, lat, lon, state=ACTIVE)"""
    return _make_volunteer
