"""HTTP client for the remote event catalog and response store."""
import logging
import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from history.models import (
    INITIAL_ONLY_VALUES,
    LEGACY_ALIASES,
    RESPONSE_VALUES,
    BatchAction,
    BatchResult,
    Event,
    ResponseEntry,
    Venue,
)

logger = logging.getLogger(__name__)

MAX_TAGS = 3


class ApiError(Exception):
    """Raised when the remote store answers with success: false."""


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp into an aware datetime.

    Args:
        value: ISO string, with or without a trailing 'Z'; naive values are UTC

    Returns:
        Aware datetime, or None if the value cannot be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format an aware datetime as an ISO 8601 UTC string with millisecond precision."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def normalize_response(value: Any) -> Optional[str]:
    """
    Map a stored response value onto the current vocabulary.

    Raises:
        ValueError: If the value is not a known response
    """
    if value is None or value == '':
        return None
    value = LEGACY_ALIASES.get(value, value)
    if value in RESPONSE_VALUES or value in INITIAL_ONLY_VALUES:
        return value
    raise ValueError(f"Unknown response value: {value!r}")


def _item_to_event(item: Dict[str, Any]) -> Optional[Event]:
    """
    Convert an API item to an Event.

    Args:
        item: Event record as returned by GET /events

    Returns:
        Event object or None if conversion fails
    """
    try:
        starts_at = parse_timestamp(item['startsAt'])
        ends_at = parse_timestamp(item.get('endsAt')) or starts_at
        if starts_at is None:
            raise ValueError(f"Invalid startsAt: {item['startsAt']!r}")

        venue_data = item.get('venue')
        venue = None
        if isinstance(venue_data, dict):
            venue = Venue(
                name=venue_data.get('name', ''),
                address=venue_data.get('address', ''),
                lat=float(venue_data['lat']),
                lng=float(venue_data['lng'])
            )

        tags = [t for t in item.get('tags') or [] if isinstance(t, str)][:MAX_TAGS]

        return Event(
            id=str(item['id']),
            title=item.get('title', ''),
            starts_at=starts_at,
            ends_at=ends_at,
            venue=venue,
            tags=tags,
            description=item.get('description', ''),
            organizer_id=item.get('organizerId', ''),
            organizer_name=item.get('organizerName'),
            is_public=item.get('isPublic'),
            is_online=item.get('isOnline'),
            stats=item.get('stats') or {},
            cover_url=item.get('coverUrl'),
            price=item.get('price'),
            ticket_url=item.get('ticketUrl')
        )
    except (KeyError, ValueError, TypeError) as e:
        logger.warning(f"Failed to convert event item {item.get('id')}: {e}")
        return None


def _item_to_response_entry(item: Dict[str, Any]) -> Optional[ResponseEntry]:
    """
    Convert an API item to a ResponseEntry.

    Older rows carry the value under 'response' and may use legacy names.

    Args:
        item: Response record as returned by GET /responses

    Returns:
        ResponseEntry or None if conversion fails
    """
    try:
        final = item['finalResponse'] if 'finalResponse' in item else item.get('response')
        return ResponseEntry(
            id=str(item['id']),
            user_id=str(item['userId']),
            event_id=str(item['eventId']),
            initial_response=normalize_response(item.get('initialResponse')),
            final_response=normalize_response(final),
            created_at=parse_timestamp(item.get('createdAt')),
            invited_by_user_id=item.get('invitedByUserId') or None
        )
    except (KeyError, ValueError) as e:
        logger.warning(f"Skipping response row {item.get('id')}: {e}")
        return None


def batch_action_to_item(action: BatchAction) -> Dict[str, Any]:
    """Serialize a BatchAction for the PUT /batch payload."""
    item = asdict(action)
    item['userId'] = item.pop('user_id')
    return item


class ResponseStoreClient:
    """Client for the JSON API in front of the response store."""

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        max_retries: int = 3,
        base_delay: float = 1,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the API client.

        Args:
            base_url: API root, e.g. https://example.com/api
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts for idempotent GET requests (default: 3)
            base_delay: First backoff delay in seconds, doubled each attempt
            session: Optional requests session to reuse
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.session = session or requests.Session()

    def _unwrap(self, endpoint: str, response: requests.Response) -> Any:
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ApiError(f"{endpoint}: unexpected response body of type {type(body).__name__}")
        if not body.get('success'):
            raise ApiError(f"{endpoint}: {body.get('error') or 'API error'}")
        return body.get('data')

    def _get(self, endpoint: str) -> Any:
        """
        GET an endpoint with retry logic.

        Args:
            endpoint: Path below the base URL

        Returns:
            The 'data' member of the response envelope

        Raises:
            requests.RequestException: If all retry attempts fail
            ApiError: If the envelope reports a failure
        """
        url = f"{self.base_url}{endpoint}"

        for attempt in range(self.max_retries):
            try:
                logger.info(f"GET {endpoint} (attempt {attempt + 1}/{self.max_retries})")
                response = self.session.get(url, timeout=self.timeout)
                return self._unwrap(endpoint, response)

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise

    def get_events(self) -> List[Event]:
        """
        Fetch the event catalog.

        Returns:
            List of Event objects; rows that cannot be converted are skipped
        """
        items = self._get('/events') or []
        events = [e for e in (_item_to_event(item) for item in items) if e]
        logger.info(f"Fetched {len(events)} events ({len(items) - len(events)} skipped)")
        return events

    def get_responses(self) -> List[ResponseEntry]:
        """
        Fetch the full response history.

        Returns:
            List of ResponseEntry objects; invalid rows are skipped
        """
        items = self._get('/responses') or []
        entries = [e for e in (_item_to_response_entry(item) for item in items) if e]
        logger.info(f"Fetched {len(entries)} response entries ({len(items) - len(entries)} skipped)")
        return entries

    def put_batch(self, actions: List[BatchAction], user_id: str) -> BatchResult:
        """
        Write a batch of actions in one request.

        The batch is all-or-nothing and is not retried here; the caller keeps
        the actions pending on failure.

        Args:
            actions: Actions to apply
            user_id: Initiating user

        Returns:
            BatchResult with the number of processed actions

        Raises:
            requests.RequestException: On network or HTTP failure
            ApiError: If the envelope reports a failure
        """
        payload = {
            'actions': [batch_action_to_item(a) for a in actions],
            'userId': user_id
        }
        logger.info(f"PUT /batch with {len(actions)} actions for user {user_id}")
        response = self.session.put(
            f"{self.base_url}/batch",
            json=payload,
            timeout=self.timeout
        )
        data = self._unwrap('/batch', response)
        if not isinstance(data, dict):
            data = {}
        return BatchResult(
            success=True,
            processed=int(data.get('processed', len(actions))),
            results=list(data.get('results') or [])
        )
