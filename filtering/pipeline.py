"""Composes matchers into visible-id sets, filtered collections and facet counts."""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from filtering.calendar import (
    OTHER,
    PAST,
    PERIOD_LABELS,
    TIME_PERIODS,
    bucket_of,
    group_events_by_periods,
    resolve_timezone,
)
from filtering.matchers import (
    NEW_BUCKET,
    UNRESPONDED_BUCKET,
    match_date_range,
    match_online,
    match_organizer,
    match_public,
    match_query,
    match_response,
    match_tags,
)
from history.models import (
    CLEARED,
    GOING,
    INTERESTED,
    INVITED,
    NOT_INTERESTED,
    SEEN,
    CalendarPeriod,
    Event,
    FacetOption,
    Facets,
    FilterContext,
    FilterState,
    ResponseEntry,
)
from history.resolution import RESPONSE_GROUP_KEYS, response_group_key, user_responses_map

logger = logging.getLogger(__name__)

Predicate = Callable[[Event], bool]

# Criterion names, also the keys of criterion_id_sets()
QUERY = 'query'
TAGS = 'tags'
ORGANIZER = 'organizer'
RESPONSE = 'response'
PERIOD = 'period'
DATE_RANGE = 'date_range'

RESPONSE_FACET_LABELS = {
    NEW_BUCKET: 'New',
    GOING: 'Going',
    INTERESTED: 'Interested',
    NOT_INTERESTED: 'Not interested',
    UNRESPONDED_BUCKET: 'Seen',
}

_RESPONSE_FACET_BY_KEY = {
    'null': NEW_BUCKET,
    INVITED: NEW_BUCKET,
    SEEN: UNRESPONDED_BUCKET,
    CLEARED: UNRESPONDED_BUCKET,
    GOING: GOING,
    INTERESTED: INTERESTED,
    NOT_INTERESTED: NOT_INTERESTED,
}


def build_filter_context(
    events: Iterable[Event],
    log: Iterable[ResponseEntry],
    user_id: Optional[str],
    now: datetime,
    tz: Any = None,
    visibility: Any = 'all'
) -> FilterContext:
    """
    Resolve the viewer's responses once and bundle them with the clock.

    Args:
        events: Event catalog
        log: Response history
        user_id: Viewer, or None when anonymous
        now: Current instant
        tz: Viewer timezone
        visibility: True for public, False for private, 'all' for both

    Returns:
        FilterContext ready for the pipeline
    """
    return FilterContext(
        now=now,
        tz=resolve_timezone(tz),
        user_id=user_id,
        responses=user_responses_map(events, log, user_id),
        visibility=visibility
    )


def _base_predicates(state: FilterState, context: FilterContext) -> List[Predicate]:
    predicates = [lambda e: match_public(e, context.visibility)]
    if not state.show_hidden:
        predicates.append(lambda e: match_online(e, True))
    return predicates


def _criterion_predicates(state: FilterState, context: FilterContext) -> Dict[str, Predicate]:
    """Predicates of the active criteria only, keyed by criterion name."""
    zone = resolve_timezone(context.tz)
    predicates: Dict[str, Predicate] = {}

    if isinstance(state.search_query, str) and state.search_query.strip():
        predicates[QUERY] = lambda e: match_query(e, state.search_query)

    if state.tags and not isinstance(state.tags, str) and 'all' not in state.tags:
        predicates[TAGS] = lambda e: match_tags(e, state.tags)

    if isinstance(state.organizer_id, str) and state.organizer_id.strip():
        predicates[ORGANIZER] = lambda e: match_organizer(e, state.organizer_id)

    if isinstance(state.response_value, str) and state.response_value not in ('', 'all'):
        predicates[RESPONSE] = lambda e: match_response(
            e, state.response_value, context.responses
        )

    if isinstance(state.temporal_bucket, str) and state.temporal_bucket not in ('', 'all'):
        predicates[PERIOD] = lambda e: bucket_of(e, context.now, zone).key == state.temporal_bucket

    if state.date_from is not None or state.date_to is not None:
        predicates[DATE_RANGE] = lambda e: match_date_range(e, state.date_from, state.date_to)

    return predicates


def _is_excluded(
    period_key: str,
    response_key: str,
    temporal_bucket: Optional[str],
    response_value: Optional[str],
    state: FilterState
) -> bool:
    """Past and rejected events are hidden unless explicitly selected."""
    if period_key == PAST and not state.include_past and temporal_bucket != PAST:
        return True
    if state.hide_rejected and response_key == NOT_INTERESTED and response_value != NOT_INTERESTED:
        return True
    return False


def _exclusion_predicate(state: FilterState, context: FilterContext) -> Predicate:
    zone = resolve_timezone(context.tz)

    def passes(event: Event) -> bool:
        return not _is_excluded(
            bucket_of(event, context.now, zone).key,
            response_group_key(context.responses.get(event.id)),
            state.temporal_bucket,
            state.response_value,
            state
        )

    return passes


def apply_filters(
    events: Iterable[Event],
    state: FilterState,
    context: FilterContext
) -> List[Event]:
    """
    Filter events in a single pass.

    Every active predicate is evaluated per event and evaluation stops at the
    first one that fails. The result agrees with visible_event_ids().

    Args:
        events: Events to filter
        state: Active filters
        context: Viewer context

    Returns:
        Matching events in input order
    """
    predicates = _base_predicates(state, context)
    predicates.extend(_criterion_predicates(state, context).values())
    predicates.append(_exclusion_predicate(state, context))
    return [event for event in events if all(p(event) for p in predicates)]


def candidate_events(
    events: Iterable[Event],
    state: FilterState,
    context: FilterContext
) -> List[Event]:
    """Base pool for the current visibility mode; offline events only with show_hidden."""
    predicates = _base_predicates(state, context)
    return [event for event in events if all(p(event) for p in predicates)]


def criterion_id_sets(
    events: Iterable[Event],
    state: FilterState,
    context: FilterContext
) -> Dict[str, Optional[Set[str]]]:
    """
    Compute the id set matched by each criterion.

    Args:
        events: Candidate pool
        state: Active filters
        context: Viewer context

    Returns:
        Criterion name -> set of matching ids, or None for an inactive criterion
    """
    events = list(events)
    active = _criterion_predicates(state, context)
    sets: Dict[str, Optional[Set[str]]] = {
        name: None for name in (QUERY, TAGS, ORGANIZER, RESPONSE, PERIOD, DATE_RANGE)
    }
    for name, predicate in active.items():
        sets[name] = {event.id for event in events if predicate(event)}
    return sets


def intersect_event_ids(*id_sets: Optional[Set[str]]) -> Optional[Set[str]]:
    """
    Intersect id sets, smallest first.

    None entries are inactive criteria and are ignored. An empty set means
    nothing matches and empties the result.

    Returns:
        Intersection, or None when every criterion is inactive
    """
    active = sorted((s for s in id_sets if s is not None), key=len)
    if not active:
        return None
    result = set(active[0])
    for ids in active[1:]:
        if not result:
            break
        result &= ids
    return result


def visible_event_ids(
    events: Iterable[Event],
    state: FilterState,
    context: FilterContext
) -> List[str]:
    """
    Ids of the events that should currently be shown.

    Args:
        events: Event catalog
        state: Active filters
        context: Viewer context

    Returns:
        Ordered list of visible event ids
    """
    pool = candidate_events(events, state, context)
    ids = intersect_event_ids(*criterion_id_sets(pool, state, context).values())
    passes = _exclusion_predicate(state, context)
    return [
        event.id for event in pool
        if (ids is None or event.id in ids) and passes(event)
    ]


def group_and_count_events_by_response(
    events: Iterable[Event],
    responses: Dict[str, Optional[str]]
) -> Tuple[Dict[str, List[Event]], Dict[str, int]]:
    """
    Group events by the viewer's current response and count them in one pass.

    Args:
        events: Events to group
        responses: event_id -> current response

    Returns:
        Tuple of (group key -> events, group key -> count)
    """
    groups: Dict[str, List[Event]] = {key: [] for key in RESPONSE_GROUP_KEYS}
    counts: Dict[str, int] = {key: 0 for key in RESPONSE_GROUP_KEYS}
    for event in events:
        key = response_group_key(responses.get(event.id))
        groups[key].append(event)
        counts[key] += 1
    return groups, counts


def _ids_without(sets: Dict[str, Optional[Set[str]]], criterion: str) -> Optional[Set[str]]:
    return intersect_event_ids(*(ids for name, ids in sets.items() if name != criterion))


def facet_counts(
    events: Iterable[Event],
    state: FilterState,
    context: FilterContext
) -> Facets:
    """
    Count the results each facet option would give.

    Period, response and organizer are single-select: their options are
    counted against the intersection of every other criterion, as if the
    option replaced the current selection. Tags add to the selection, so tag
    options are counted against the full intersection.

    Args:
        events: Event catalog
        state: Active filters
        context: Viewer context

    Returns:
        Facets with non-empty options
    """
    zone = resolve_timezone(context.tz)
    pool = candidate_events(events, state, context)
    sets = criterion_id_sets(pool, state, context)

    keys: Dict[str, Tuple[str, str]] = {}
    for event in pool:
        keys[event.id] = (
            bucket_of(event, context.now, zone).key,
            response_group_key(context.responses.get(event.id))
        )

    def allowed(ids: Optional[Set[str]], event: Event) -> bool:
        return ids is None or event.id in ids

    period_counts: Dict[str, int] = {}
    ids = _ids_without(sets, PERIOD)
    for event in pool:
        period_key, response_key = keys[event.id]
        if period_key == OTHER or not allowed(ids, event):
            continue
        if _is_excluded(period_key, response_key, period_key, state.response_value, state):
            continue
        period_counts[period_key] = period_counts.get(period_key, 0) + 1

    response_counts: Dict[str, int] = {}
    ids = _ids_without(sets, RESPONSE)
    for event in pool:
        period_key, response_key = keys[event.id]
        if not allowed(ids, event):
            continue
        if _is_excluded(period_key, response_key, state.temporal_bucket, response_key, state):
            continue
        facet = _RESPONSE_FACET_BY_KEY[response_key]
        response_counts[facet] = response_counts.get(facet, 0) + 1

    organizer_counts: Dict[str, int] = {}
    organizer_labels: Dict[str, str] = {}
    ids = _ids_without(sets, ORGANIZER)
    for event in pool:
        period_key, response_key = keys[event.id]
        if not event.organizer_id or not allowed(ids, event):
            continue
        if _is_excluded(period_key, response_key, state.temporal_bucket, state.response_value, state):
            continue
        organizer_counts[event.organizer_id] = organizer_counts.get(event.organizer_id, 0) + 1
        organizer_labels.setdefault(event.organizer_id, event.organizer_name or event.organizer_id)

    tag_counts: Dict[str, int] = {}
    visible = set(visible_event_ids(pool, state, context))
    for event in pool:
        if event.id not in visible:
            continue
        for tag in {t.strip().lower() for t in event.tags or [] if isinstance(t, str) and t.strip()}:
            tag_counts[tag] = tag_counts.get(tag, 0) + 1

    return Facets(
        periods=[
            FacetOption(value=key, label=PERIOD_LABELS[key], count=period_counts[key])
            for key in TIME_PERIODS if key in period_counts
        ],
        responses=[
            FacetOption(value=key, label=label, count=response_counts[key])
            for key, label in RESPONSE_FACET_LABELS.items() if key in response_counts
        ],
        organizers=sorted(
            (FacetOption(value=oid, label=organizer_labels[oid], count=count)
             for oid, count in organizer_counts.items()),
            key=lambda o: (-o.count, o.label.lower())
        ),
        tags=sorted(
            (FacetOption(value=tag, label=tag, count=count) for tag, count in tag_counts.items()),
            key=lambda o: (-o.count, o.label)
        ),
    )


def calendar_view(
    events: Iterable[Event],
    log: Iterable[ResponseEntry],
    user_id: Optional[str],
    now: datetime,
    tz: Any = None
) -> List[CalendarPeriod]:
    """Events the user is going or interested to, grouped by period."""
    events = list(events)
    responses = user_responses_map(events, log, user_id)
    attending = [e for e in events if responses.get(e.id) in (GOING, INTERESTED)]
    periods, total = group_events_by_periods(attending, now, tz)
    logger.debug(f"Calendar view for {user_id}: {total} events in {len(periods)} periods")
    return periods


def organizer_view(
    events: Iterable[Event],
    user_id: Optional[str],
    now: datetime,
    tz: Any = None
) -> List[CalendarPeriod]:
    """Events organized by the user, grouped by period."""
    if not user_id:
        return []
    own = [e for e in events if e.organizer_id == user_id]
    periods, _ = group_events_by_periods(own, now, tz)
    return periods
