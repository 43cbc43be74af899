"""Latest-wins resolution of the append-only response history."""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from history.models import (
    CLEARED,
    GOING,
    INTERESTED,
    INVITED,
    NOT_INTERESTED,
    SEEN,
    Event,
    ResponseEntry,
)


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Group keys for responses; 'null' holds entries with no final value
RESPONSE_GROUP_KEYS = (GOING, INTERESTED, NOT_INTERESTED, SEEN, CLEARED, INVITED, 'null')


def _resolution_key(entry: ResponseEntry) -> Tuple:
    """
    Total ordering key for entries of one (user, event) pair.

    Entries without a timestamp sort before any timestamped entry. Among
    otherwise equal entries a real answer beats cleared/null, then entry id
    and final value make the order total so input order never matters.
    """
    has_timestamp = entry.created_at is not None
    timestamp = entry.created_at if has_timestamp else _EPOCH
    answered = entry.final_response not in (None, CLEARED)
    return (
        has_timestamp,
        timestamp,
        answered,
        entry.id or '',
        entry.final_response or '',
    )


def _pick_latest(
    current: Optional[ResponseEntry],
    candidate: ResponseEntry
) -> ResponseEntry:
    if current is None or _resolution_key(candidate) > _resolution_key(current):
        return candidate
    return current


def latest_entry_for(
    log: Iterable[ResponseEntry],
    user_id: str,
    event_id: str
) -> Optional[ResponseEntry]:
    """
    Return the authoritative entry for a (user, event) pair.

    Args:
        log: Response history in any order
        user_id: User identifier
        event_id: Event identifier

    Returns:
        Latest ResponseEntry, or None when the user has no history for the event
    """
    latest = None
    for entry in log:
        if entry.user_id == user_id and entry.event_id == event_id:
            latest = _pick_latest(latest, entry)
    return latest


def latest_for(
    log: Iterable[ResponseEntry],
    user_id: str,
    event_id: str
) -> Optional[str]:
    """
    Return the current response value for a (user, event) pair.

    None is returned both when no entry exists and when the latest entry has
    no final value; use latest_entry_for() to tell those apart.
    """
    entry = latest_entry_for(log, user_id, event_id)
    return entry.final_response if entry else None


def latest_by_event(
    log: Iterable[ResponseEntry],
    user_id: str
) -> Dict[str, ResponseEntry]:
    """
    Map event_id to the authoritative entry for one user.

    Args:
        log: Response history in any order
        user_id: User identifier

    Returns:
        Dictionary mapping event_id to ResponseEntry
    """
    latest: Dict[str, ResponseEntry] = {}
    for entry in log:
        if entry.user_id != user_id:
            continue
        latest[entry.event_id] = _pick_latest(latest.get(entry.event_id), entry)
    return latest


def latest_by_user(
    log: Iterable[ResponseEntry],
    event_id: str
) -> Dict[str, ResponseEntry]:
    """
    Map user_id to the authoritative entry for one event.

    Args:
        log: Response history in any order
        event_id: Event identifier

    Returns:
        Dictionary mapping user_id to ResponseEntry
    """
    latest: Dict[str, ResponseEntry] = {}
    for entry in log:
        if entry.event_id != event_id:
            continue
        latest[entry.user_id] = _pick_latest(latest.get(entry.user_id), entry)
    return latest


def user_responses_map(
    events: Iterable[Event],
    log: Iterable[ResponseEntry],
    user_id: Optional[str]
) -> Dict[str, Optional[str]]:
    """
    Map event_id to the current response of a user, limited to given events.

    Events without any history are left out of the result.
    """
    if not user_id:
        return {}
    event_ids = {event.id for event in events}
    return {
        event_id: entry.final_response
        for event_id, entry in latest_by_event(log, user_id).items()
        if event_id in event_ids
    }


def response_group_key(value: Optional[str]) -> str:
    """Group key of a response value; unknown and empty values fall in 'null'."""
    if value in RESPONSE_GROUP_KEYS:
        return value
    return 'null'


def guests_by_response(
    log: Iterable[ResponseEntry],
    event_id: str
) -> Dict[str, List[ResponseEntry]]:
    """Group the latest entry of every user of an event by response."""
    groups: Dict[str, List[ResponseEntry]] = {key: [] for key in RESPONSE_GROUP_KEYS}
    for entry in latest_by_user(log, event_id).values():
        groups[response_group_key(entry.final_response)].append(entry)

    for entries in groups.values():
        entries.sort(key=lambda e: e.user_id)

    return groups
