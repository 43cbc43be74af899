"""Cached access to the remote catalog and response history."""
import logging
from typing import List, Optional

from history.models import Event, ResponseEntry
from sync.api_client import ResponseStoreClient
from sync.cache import MemoryCache, ResponseCache

logger = logging.getLogger(__name__)

EVENTS_KEY = 'events'
RESPONSES_KEY = 'responses'


class DataManager:
    """Reads through the caches to the response store client."""

    def __init__(
        self,
        client: ResponseStoreClient,
        cache: Optional[MemoryCache] = None,
        response_cache: Optional[ResponseCache] = None
    ):
        """
        Initialize the data manager.

        Args:
            client: API client for the remote store
            cache: TTL cache for the catalog
            response_cache: Cache for the response history
        """
        self.client = client
        self.cache = cache or MemoryCache()
        self.response_cache = response_cache or ResponseCache()

    def get_events(self) -> List[Event]:
        events = self.cache.get(EVENTS_KEY)
        if events is None:
            events = self.client.get_events()
            self.cache.set(EVENTS_KEY, events)
        else:
            logger.debug(f"Serving {len(events)} events from cache")
        return events

    def get_responses(self) -> List[ResponseEntry]:
        entries = self.response_cache.get(RESPONSES_KEY)
        if entries is None:
            entries = self.client.get_responses()
            self.response_cache.set(RESPONSES_KEY, entries)
        else:
            logger.debug(f"Serving {len(entries)} response entries from cache")
        return entries

    def invalidate_user_cache(self, user_id: str) -> None:
        """Drop cached data tied to a user from both caches."""
        removed = self.cache.invalidate_user(user_id) + self.response_cache.invalidate_user(user_id)
        logger.info(f"Invalidated {removed} cache entries for user {user_id}")

    def invalidate_cache(self) -> None:
        self.cache.clear()
        self.response_cache.clear()
        logger.info("Cleared all caches")
