"""Optimistic response engine: local append, debounced remote write."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import requests

from history.models import (
    CLEARED,
    EVENT_RESPONSE,
    FRIENDSHIP_ACCEPT,
    FRIENDSHIP_BLOCK,
    FRIENDSHIP_REMOVE,
    GOING,
    INTERESTED,
    INVITED,
    LINKED,
    NEW,
    NOT_INTERESTED,
    SEEN,
    BatchAction,
    Event,
    ResponseEntry,
)
from history.resolution import user_responses_map
from history.response_log import ResponseLog
from sync.api_client import ApiError, format_timestamp
from sync.batch_manager import DEFAULT_DELAY_SECONDS, BatchManager, new_action_id
from sync.data_manager import DataManager

logger = logging.getLogger(__name__)

IDLE = 'idle'
LOADING = 'loading'
READY = 'ready'
ERROR = 'error'

# Values a user can pick on an open card
CHOICES = frozenset({GOING, INTERESTED, NOT_INTERESTED, CLEARED})

# Closing without a change records 'seen' over these
_UNANSWERED = frozenset({None, INVITED, LINKED})

ResponseListener = Callable[[str, Optional[str]], None]

_UNSET = object()


class CatalogUnavailableError(Exception):
    """Raised when the catalog or the response history cannot be loaded."""


@dataclass
class _CardSession:
    event_id: str
    prior: Optional[str]
    pending: object = _UNSET


class ResponseSyncEngine:
    """
    Tracks one user's open/choose/close cycles over the response log.

    Every cycle appends exactly one entry synchronously to the in-memory log
    and queues the matching batch action. Reads always resolve over the full
    log, unflushed local entries included.
    """

    def __init__(
        self,
        data_manager: DataManager,
        user_id: Optional[str] = None,
        delay: float = DEFAULT_DELAY_SECONDS,
        log: Optional[ResponseLog] = None
    ):
        """
        Initialize the engine.

        Args:
            data_manager: Cached access to the remote store
            user_id: Current user, None when anonymous
            delay: Debounce window of the batch writer in seconds
            log: Response log to append to (default: a new empty log)
        """
        self.data_manager = data_manager
        self.user_id = user_id
        self.log = log or ResponseLog()
        self.events: List[Event] = []
        self.status = IDLE
        self.error: Optional[str] = None
        self.batch_manager = BatchManager(
            data_manager.client,
            delay=delay,
            on_flushed=self._on_flushed
        )
        self._sessions: Dict[str, _CardSession] = {}
        self._sources: Dict[str, Tuple[str, Optional[str]]] = {}
        self._listeners: List[ResponseListener] = []

    @property
    def is_loading(self) -> bool:
        return self.status == LOADING

    @property
    def has_error(self) -> bool:
        return self.status == ERROR

    async def load(self) -> None:
        """
        Fetch the catalog and the response history.

        Raises:
            CatalogUnavailableError: If either fetch fails
        """
        self.status = LOADING
        self.error = None
        logger.info(f"Loading catalog and responses for user {self.user_id}")

        try:
            events, entries = await asyncio.gather(
                asyncio.to_thread(self.data_manager.get_events),
                asyncio.to_thread(self.data_manager.get_responses)
            )
        except (requests.RequestException, ApiError) as e:
            self.status = ERROR
            self.error = str(e)
            logger.error(f"Failed to load catalog: {e}")
            raise CatalogUnavailableError(str(e)) from e

        self.events = list(events)
        self.log.replace_remote(entries)
        self.status = READY
        logger.info(f"Loaded {len(self.events)} events and {len(entries)} response entries")

    async def refresh(self) -> bool:
        """
        Refetch the response history after a cache invalidation.

        A failed refetch keeps the current log.

        Returns:
            True if the log was refreshed
        """
        try:
            entries = await asyncio.to_thread(self.data_manager.get_responses)
        except (requests.RequestException, ApiError) as e:
            logger.warning(f"Response refresh failed, keeping current state: {e}")
            return False
        self.log.replace_remote(entries)
        return True

    # Listeners

    def add_listener(self, listener: ResponseListener) -> None:
        """Register a callback receiving (event_id, response) on every visible change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ResponseListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event_id: str, response: Optional[str]) -> None:
        for listener in list(self._listeners):
            listener(event_id, response)

    # Reads

    def current_response(self, event_id: str) -> Optional[str]:
        """Resolved response of the current user, pending card choices excluded."""
        if not self.user_id:
            return None
        return self.log.current_response(self.user_id, event_id)

    def displayed_response(self, event_id: str) -> Optional[str]:
        """Response to show for an event, a pending card choice included."""
        session = self._sessions.get(event_id)
        if session is not None and session.pending is not _UNSET:
            return session.pending
        return self.current_response(event_id)

    def responses_map(self) -> Dict[str, Optional[str]]:
        return user_responses_map(self.events, self.log, self.user_id)

    # Card cycle

    def mark_linked(
        self,
        event_id: str,
        source: str = LINKED,
        invited_by_user_id: Optional[str] = None
    ) -> None:
        """
        Record how the user reached an event they have no entry for yet.

        The source becomes the initial value of the next entry for the event.

        Args:
            event_id: Event identifier
            source: 'linked' or 'invited'
            invited_by_user_id: User who shared the link or sent the invite
        """
        if source not in (LINKED, INVITED):
            raise ValueError(f"Unsupported source: {source!r}")
        self._sources[event_id] = (source, invited_by_user_id)

    def open(self, event_id: str) -> Optional[str]:
        """
        Open an event card and capture the response it starts from.

        Returns:
            Current response, None if none
        """
        if not self.user_id:
            logger.warning(f"Ignoring open of {event_id} without a user")
            return None
        prior = self.current_response(event_id)
        self._sessions[event_id] = _CardSession(event_id=event_id, prior=prior)
        logger.debug(f"Opened {event_id} for {self.user_id} from {prior}")
        return prior

    def is_open(self, event_id: str) -> bool:
        return event_id in self._sessions

    def choose(self, event_id: str, response: str) -> Optional[str]:
        """
        Set the pending response of an open card.

        Nothing is written until the card is closed; listeners are notified
        so the marker style follows the choice.

        Returns:
            The pending response, None if the card is not open
        """
        if response not in CHOICES:
            raise ValueError(f"Unsupported response: {response!r}")

        session = self._sessions.get(event_id)
        if session is None:
            logger.warning(f"Ignoring choice on {event_id}: card is not open")
            return None

        session.pending = response
        self._notify(event_id, response)
        return response

    def toggle(self, event_id: str, response: str) -> Optional[str]:
        """Pick a response, or clear it when it is already the displayed one."""
        current = self.displayed_response(event_id)
        return self.choose(event_id, CLEARED if current == response else response)

    def close(self, event_id: str) -> Optional[ResponseEntry]:
        """
        Close an event card and append the entry summarizing the visit.

        Unchanged and unanswered (no entry, null, invited or linked) records
        'seen'. Unchanged otherwise records the prior value again. A change
        records the new value. The initial value is what resolution returns
        right now, or the link source or 'new' when there is no entry.

        Must be called from a running event loop.

        Returns:
            The appended ResponseEntry, None if the card was not open
        """
        session = self._sessions.pop(event_id, None)
        if session is None:
            logger.warning(f"Ignoring close of {event_id}: card is not open")
            return None

        source, source_inviter = self._sources.pop(event_id, (None, None))
        latest = self.log.latest_entry(self.user_id, event_id)

        if latest is None:
            initial = source or NEW
            current = None
        else:
            initial = latest.final_response
            current = latest.final_response

        changed = session.pending is not _UNSET and session.pending != session.prior
        if changed:
            final = session.pending
        elif current in _UNANSWERED:
            final = SEEN
        else:
            final = current

        invited_by = source_inviter or (latest.invited_by_user_id if latest else None)
        entry = self.log.append(self.user_id, event_id, initial, final, invited_by)
        self._enqueue_response(entry)
        logger.info(f"Closed {event_id} for {self.user_id}: {initial} -> {final}")

        self._notify(event_id, final)
        return entry

    def _enqueue_response(self, entry: ResponseEntry) -> None:
        action = BatchAction(
            id=new_action_id(EVENT_RESPONSE),
            type=EVENT_RESPONSE,
            data={
                'entryId': entry.id,
                'eventId': entry.event_id,
                'response': entry.final_response,
                'initialResponse': entry.initial_response,
                'finalResponse': entry.final_response,
                'invitedByUserId': entry.invited_by_user_id,
                'createdAt': format_timestamp(entry.created_at),
            },
            user_id=entry.user_id,
            timestamp=int(entry.created_at.timestamp() * 1000)
        )
        self.batch_manager.add_action(action)

    # Friendships

    def accept_friendship(self, friendship_id: str, to_user_id: str) -> BatchAction:
        return self._add_friendship_action(FRIENDSHIP_ACCEPT, friendship_id, to_user_id)

    def block_friendship(self, friendship_id: str, to_user_id: str) -> BatchAction:
        return self._add_friendship_action(FRIENDSHIP_BLOCK, friendship_id, to_user_id)

    def remove_friendship(self, friendship_id: str, to_user_id: str) -> BatchAction:
        return self._add_friendship_action(FRIENDSHIP_REMOVE, friendship_id, to_user_id)

    def _add_friendship_action(
        self,
        action_type: str,
        friendship_id: str,
        to_user_id: str
    ) -> BatchAction:
        if not self.user_id:
            raise ValueError("Friendship actions need a user")
        timestamp = self.log.next_timestamp()
        action = BatchAction(
            id=new_action_id(action_type),
            type=action_type,
            data={'friendshipId': friendship_id, 'toUserId': to_user_id},
            user_id=self.user_id,
            timestamp=int(timestamp.timestamp() * 1000)
        )
        self.batch_manager.add_action(action)
        logger.info(f"Queued {action_type} for {to_user_id}")
        return action

    # Flush

    def _on_flushed(self, actions: List[BatchAction]) -> None:
        entry_ids = [
            a.data['entryId'] for a in actions
            if a.type == EVENT_RESPONSE and a.data.get('entryId')
        ]
        self.log.mark_flushed(entry_ids)

        users = []
        for action in actions:
            users.append(action.user_id)
            if action.type != EVENT_RESPONSE and action.data.get('toUserId'):
                users.append(action.data['toUserId'])
        for user_id in dict.fromkeys(users):
            self.data_manager.invalidate_user_cache(user_id)

    async def save_now(self):
        return await self.batch_manager.save_now()

    async def teardown(self):
        """
        Close every open card and flush without waiting for the debounce window.

        Returns:
            BatchResult of the flush, None when nothing was pending
        """
        for event_id in list(self._sessions):
            self.close(event_id)
        return await self.batch_manager.save_now()
