"""Data models for events, response history and filtering."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


# Response values stored as final_response
GOING = 'going'
INTERESTED = 'interested'
NOT_INTERESTED = 'not_interested'
CLEARED = 'cleared'
SEEN = 'seen'
INVITED = 'invited'

RESPONSE_VALUES = frozenset({GOING, INTERESTED, NOT_INTERESTED, CLEARED, SEEN, INVITED})

# Values only ever found as initial_response
NEW = 'new'
LINKED = 'linked'

INITIAL_ONLY_VALUES = frozenset({NEW, LINKED})

# Older log rows use these names
LEGACY_ALIASES = {
    'participe': GOING,
    'maybe': INTERESTED,
    'not_there': NOT_INTERESTED,
}

# Batch action types
EVENT_RESPONSE = 'event_response'
FRIENDSHIP_ACCEPT = 'friendship_accept'
FRIENDSHIP_BLOCK = 'friendship_block'
FRIENDSHIP_REMOVE = 'friendship_remove'

BATCH_ACTION_TYPES = frozenset({
    EVENT_RESPONSE, FRIENDSHIP_ACCEPT, FRIENDSHIP_BLOCK, FRIENDSHIP_REMOVE
})


@dataclass
class Venue:
    """Geospatial point and address of an event."""
    name: str
    address: str
    lat: float
    lng: float


@dataclass
class Event:
    """Catalog record, read-only for the engine."""
    id: str
    title: str
    starts_at: datetime
    ends_at: datetime
    venue: Optional[Venue]
    tags: List[str]
    description: str
    organizer_id: str
    organizer_name: Optional[str] = None
    is_public: Optional[bool] = None
    is_online: Optional[bool] = None
    stats: Dict[str, Any] = field(default_factory=dict)
    cover_url: Optional[str] = None
    price: Optional[str] = None
    ticket_url: Optional[str] = None


@dataclass(frozen=True)
class ResponseEntry:
    """One immutable row of the per-user-per-event response history."""
    id: str
    user_id: str
    event_id: str
    initial_response: Optional[str]
    final_response: Optional[str]
    created_at: Optional[datetime]
    invited_by_user_id: Optional[str] = None


@dataclass
class BatchAction:
    """Queued intent to mutate remote state."""
    id: str
    type: str
    data: Dict[str, Any]
    user_id: str
    timestamp: int


@dataclass
class BatchResult:
    """Result of a batch write."""
    success: bool
    processed: int
    results: List[Dict[str, Any]]
    error: Optional[str] = None


@dataclass
class FilterState:
    """Active filters chosen in the UI."""
    search_query: str = ''
    temporal_bucket: str = 'all'
    tags: List[str] = field(default_factory=lambda: ['all'])
    organizer_id: Optional[str] = None
    response_value: Optional[str] = None
    show_hidden: bool = False
    hide_rejected: bool = True
    include_past: bool = False
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


@dataclass
class FilterContext:
    """Viewer-dependent inputs to the filter pipeline."""
    now: datetime
    tz: Any = None
    user_id: Optional[str] = None
    responses: Dict[str, Optional[str]] = field(default_factory=dict)
    visibility: Union[bool, str] = 'all'


@dataclass
class Period:
    """Temporal bucket of a single event."""
    key: str
    label: str
    start_date: datetime
    end_date: datetime


@dataclass
class CalendarPeriod:
    """Derived grouping of events for one bucket."""
    key: str
    label: str
    start_date: datetime
    end_date: datetime
    events: List[Event] = field(default_factory=list)


@dataclass
class FacetOption:
    """One candidate value of a filter dimension."""
    value: Optional[str]
    label: str
    count: int


@dataclass
class Facets:
    """Facet suggestions for the filter bar."""
    periods: List[FacetOption]
    responses: List[FacetOption]
    organizers: List[FacetOption]
    tags: List[FacetOption]
