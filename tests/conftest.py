"""Shared fixtures for the test suite."""
from datetime import datetime, timedelta, timezone

import pytest

from history.models import Event, ResponseEntry, Venue


# Wednesday 2024-01-17 14:00 UTC
NOW = datetime(2024, 1, 17, 14, 0, tzinfo=timezone.utc)


def build_event(
    event_id,
    starts_at=None,
    ends_at=None,
    tags=None,
    organizer_id='org1',
    **kwargs
):
    """Create an Event with sensible defaults."""
    starts_at = starts_at or NOW + timedelta(hours=2)
    return Event(
        id=event_id,
        title=kwargs.pop('title', f"Event {event_id}"),
        starts_at=starts_at,
        ends_at=ends_at or starts_at + timedelta(hours=2),
        venue=kwargs.pop('venue', Venue(name='Hall', address='1 Main St', lat=48.85, lng=2.35)),
        tags=tags if tags is not None else [],
        description=kwargs.pop('description', ''),
        organizer_id=organizer_id,
        **kwargs
    )


def build_entry(
    entry_id,
    final_response,
    created_at,
    user_id='u1',
    event_id='e1',
    initial_response=None,
    invited_by_user_id=None
):
    """Create a ResponseEntry."""
    return ResponseEntry(
        id=entry_id,
        user_id=user_id,
        event_id=event_id,
        initial_response=initial_response,
        final_response=final_response,
        created_at=created_at,
        invited_by_user_id=invited_by_user_id
    )


@pytest.fixture
def now():
    """Fixed current instant."""
    return NOW


@pytest.fixture
def make_event():
    """Factory fixture for events."""
    return build_event


@pytest.fixture
def make_entry():
    """Factory fixture for response entries."""
    return build_entry
