"""In-memory caches for fetched catalog and response data."""
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 120

FRIENDS_PREFIX = 'friends'
RESPONSES_PREFIX = 'responses'

_SEPARATORS = ('-', '_', ':')


def _key_has_prefix(key: str, prefix: str) -> bool:
    return key == prefix or any(key.startswith(prefix + sep) for sep in _SEPARATORS)


def _key_belongs_to(key: str, user_id: str) -> bool:
    """Keys are scoped to a user by a trailing '-<user_id>' segment."""
    return key == user_id or any(key.endswith(sep + user_id) for sep in _SEPARATORS)


class MemoryCache:
    """Key/value cache whose entries expire after a fixed TTL."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Lifetime of an entry in seconds (default: 120)
            clock: Monotonic time source in seconds
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        cached = self._entries.get(key)
        if cached is None:
            return None

        data, stored_at = cached
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            logger.debug(f"Cache entry '{key}' expired")
            return None
        return data

    def set(self, key: str, data: Any) -> None:
        self._entries[key] = (data, self._clock())

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def invalidate_user(self, user_id: str) -> int:
        """
        Drop every key tied to a user, plus shared friend and response keys.

        Returns:
            Number of entries removed
        """
        stale = [
            key for key in self._entries
            if _key_belongs_to(key, user_id) or _key_has_prefix(key, FRIENDS_PREFIX)
            or _key_has_prefix(key, RESPONSES_PREFIX)
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)


class ResponseCache:
    """
    Key/value cache without expiry.

    Response data stays cached until an acknowledged write invalidates it,
    so optimistic state is never replaced by an older remote snapshot.
    """

    def __init__(self):
        self._entries: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._entries.get(key)

    def set(self, key: str, data: Any) -> None:
        self._entries[key] = data

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def invalidate_user(self, user_id: str) -> int:
        """Drop every key tied to a user and the shared response keys."""
        stale = [
            key for key in self._entries
            if _key_belongs_to(key, user_id) or _key_has_prefix(key, RESPONSES_PREFIX)
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)
