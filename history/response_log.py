"""In-memory append-only response history."""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Iterator, List, Optional, Set

from history.models import ResponseEntry
from history.resolution import latest_entry_for

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ResponseLog:
    """
    Ordered sequence of response entries.

    The remote snapshot and the entries appended locally are kept apart so a
    refetch never drops an entry the remote store has not acknowledged yet.
    Entries are only ever appended; current state is derived by resolution.
    """

    def __init__(
        self,
        entries: Optional[Iterable[ResponseEntry]] = None,
        clock: Callable[[], datetime] = _utc_now
    ):
        """
        Initialize the log.

        Args:
            entries: Remote entries to start from
            clock: Source of aware datetimes for new entries
        """
        self._remote: List[ResponseEntry] = list(entries or [])
        self._local: List[ResponseEntry] = []
        self._unacknowledged: Set[str] = set()
        self._clock = clock
        self._last_created_at: Optional[datetime] = None

    def __iter__(self) -> Iterator[ResponseEntry]:
        yield from self._remote
        yield from self._local

    def __len__(self) -> int:
        return len(self._remote) + len(self._local)

    @property
    def pending_ids(self) -> Set[str]:
        """Ids of local entries not yet acknowledged by the remote store."""
        return set(self._unacknowledged)

    def next_timestamp(self) -> datetime:
        """Return a creation time strictly after every local entry."""
        now = self._clock()
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + timedelta(milliseconds=1)
        self._last_created_at = now
        return now

    def append(
        self,
        user_id: str,
        event_id: str,
        initial_response: Optional[str],
        final_response: Optional[str],
        invited_by_user_id: Optional[str] = None
    ) -> ResponseEntry:
        """
        Append a new entry created now.

        Args:
            user_id: User identifier
            event_id: Event identifier
            initial_response: Value that was authoritative before this entry
            final_response: New value
            invited_by_user_id: Inviting user, if any

        Returns:
            The appended ResponseEntry
        """
        entry = ResponseEntry(
            id=f"resp_{uuid.uuid4().hex}",
            user_id=user_id,
            event_id=event_id,
            initial_response=initial_response,
            final_response=final_response,
            created_at=self.next_timestamp(),
            invited_by_user_id=invited_by_user_id
        )
        self._local.append(entry)
        self._unacknowledged.add(entry.id)
        logger.debug(
            f"Appended entry {entry.id}: {user_id}/{event_id} "
            f"{initial_response} -> {final_response}"
        )
        return entry

    def mark_flushed(self, entry_ids: Iterable[str]) -> None:
        """Record that the remote store has accepted these local entries."""
        self._unacknowledged.difference_update(entry_ids)

    def replace_remote(self, entries: Iterable[ResponseEntry]) -> None:
        """
        Swap in a fresh remote snapshot.

        An acknowledged local entry is dropped only once the snapshot holds an
        entry for the same user and event created no earlier; a lagging
        snapshot must not revert the user's own view. Unacknowledged entries
        are always kept.
        """
        self._remote = list(entries)
        remote_ids = {e.id for e in self._remote}
        latest_remote = {}
        for e in self._remote:
            if e.created_at is None:
                continue
            key = (e.user_id, e.event_id)
            if key not in latest_remote or e.created_at > latest_remote[key]:
                latest_remote[key] = e.created_at

        kept = []
        for e in self._local:
            if e.id in self._unacknowledged:
                kept.append(e)
                continue
            remote_at = latest_remote.get((e.user_id, e.event_id))
            if e.id in remote_ids or (remote_at is not None and remote_at >= e.created_at):
                continue
            kept.append(e)
        self._local = kept
        logger.info(
            f"Replaced remote snapshot with {len(self._remote)} entries, "
            f"{len(self._local)} local entries still pending"
        )

    def latest_entry(self, user_id: str, event_id: str) -> Optional[ResponseEntry]:
        return latest_entry_for(self, user_id, event_id)

    def current_response(self, user_id: str, event_id: str) -> Optional[str]:
        entry = self.latest_entry(user_id, event_id)
        return entry.final_response if entry else None
