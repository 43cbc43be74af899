"""Predicates over a single event.

Every matcher returns True when its criterion is absent, empty or 'all', and
degrades to True on a criterion it cannot interpret.
"""
import dataclasses
import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Union

from filtering.calendar import bucket_of
from history.models import CLEARED, INVITED, SEEN, Event
from history.resolution import response_group_key

logger = logging.getLogger(__name__)

# Synthetic response filters
NEW_BUCKET = 'new'
UNRESPONDED_BUCKET = 'unresponded'

_NEW_KEYS = frozenset({'null', INVITED})
_UNRESPONDED_KEYS = frozenset({SEEN, CLEARED})


def query_matches(item: Any, query: str) -> bool:
    """
    Case-insensitive substring search over every string/number leaf of item.

    Args:
        item: Value to search (string, number, list, dict or dataclass)
        query: Lowercased, stripped query

    Returns:
        True if any leaf contains the query
    """
    if isinstance(item, bool) or item is None:
        return False
    if isinstance(item, str):
        return query in item.lower()
    if isinstance(item, (int, float)):
        return query in str(item).lower()
    if dataclasses.is_dataclass(item) and not isinstance(item, type):
        return any(
            query_matches(getattr(item, f.name), query)
            for f in dataclasses.fields(item)
        )
    if isinstance(item, Mapping):
        return any(query_matches(value, query) for value in item.values())
    if isinstance(item, (list, tuple, set, frozenset)):
        return any(query_matches(value, query) for value in item)
    return False


def match_query(event: Event, query: Optional[str]) -> bool:
    """Text search over all fields of the event, nested ones included."""
    if not isinstance(query, str):
        return True
    q = query.strip().lower()
    if not q:
        return True
    return query_matches(event, q)


def _normalized_tags(tags: Iterable[Any]) -> list:
    return [t.strip().lower() for t in tags if isinstance(t, str) and t.strip()]


def match_tags(event: Event, tags: Optional[Iterable[str]]) -> bool:
    """
    AND semantics: every selected tag must be a substring of some event tag.

    Args:
        event: Event to test
        tags: Selected tags; empty or containing 'all' disables the filter

    Returns:
        True if the event carries every selected tag
    """
    if not tags or isinstance(tags, str):
        return True
    try:
        selected = list(tags)
    except TypeError:
        return True
    if 'all' in selected:
        return True

    wanted = _normalized_tags(selected)
    if not wanted:
        return True

    event_tags = _normalized_tags(event.tags or [])
    return all(
        any(w in et for et in event_tags)
        for w in wanted
    )


def match_public(event: Event, is_public: Union[bool, str, None]) -> bool:
    """Visibility filter: True for public, False for private, 'all' for both."""
    if not isinstance(is_public, bool):
        return True
    if event.is_public is None:
        return True
    return event.is_public is is_public


def match_online(event: Event, is_online: Union[bool, str, None]) -> bool:
    """Published/unpublished filter; events without the flag always match."""
    if not isinstance(is_online, bool):
        return True
    if event.is_online is None:
        return True
    return event.is_online is is_online


def match_organizer(event: Event, organizer_id: Optional[str]) -> bool:
    if not isinstance(organizer_id, str) or not organizer_id.strip():
        return True
    return event.organizer_id == organizer_id


def match_response(
    event: Event,
    response_filter: Optional[str],
    responses: Mapping[str, Optional[str]]
) -> bool:
    """
    Match the viewer's current response to the event.

    'new' selects events with no answer yet: no entry, a null final value, or
    only an invitation. 'unresponded' (and 'cleared') selects seen or cleared.

    Args:
        event: Event to test
        response_filter: Response value or synthetic bucket
        responses: event_id -> current response of the viewer

    Returns:
        True if the event falls in the selected bucket
    """
    if not isinstance(response_filter, str) or response_filter in ('', 'all'):
        return True

    key = response_group_key(responses.get(event.id))
    if response_filter == NEW_BUCKET:
        return key in _NEW_KEYS
    if response_filter in (UNRESPONDED_BUCKET, CLEARED):
        return key in _UNRESPONDED_KEYS
    return key == response_filter


def match_date_range(
    event: Event,
    date_from: Optional[datetime],
    date_to: Optional[datetime]
) -> bool:
    """True if the event interval intersects [date_from, date_to]."""
    try:
        if date_from is not None and event.ends_at < date_from:
            return False
        if date_to is not None and event.starts_at > date_to:
            return False
    except TypeError:
        logger.warning(f"Ignoring date range that cannot be compared: {date_from} - {date_to}")
        return True
    return True


def match_period(event: Event, period: Optional[str], now: datetime, tz: Any = None) -> bool:
    """True if the event falls in the given temporal bucket."""
    if not isinstance(period, str) or period in ('', 'all'):
        return True
    return bucket_of(event, now, tz).key == period
