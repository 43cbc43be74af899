"""Unit tests for caches and the data manager."""
from unittest.mock import Mock

from sync.cache import MemoryCache, ResponseCache
from sync.data_manager import DataManager


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


class TestMemoryCache:
    """Test cases for MemoryCache."""

    def test_entries_expire_after_ttl(self):
        """Test TTL expiry."""
        clock = FakeClock()
        cache = MemoryCache(ttl_seconds=120, clock=clock)
        cache.set('events', [1, 2])

        clock.value = 120
        assert cache.get('events') == [1, 2]

        clock.value = 121
        assert cache.get('events') is None

    def test_invalidate_user(self):
        """Test that user, friend and response keys are dropped."""
        cache = MemoryCache()
        cache.set('events', 'e')
        cache.set('user-relations-u1', 'r')
        cache.set('friends-u2', 'f')
        cache.set('responses', 'x')
        cache.set('user-relations-u2', 'keep')

        assert cache.invalidate_user('u1') == 3
        assert cache.get('events') == 'e'
        assert cache.get('user-relations-u2') == 'keep'

    def test_invalidate_user_matches_whole_segments(self):
        """Test that a short user id does not evict shared keys containing it."""
        cache = MemoryCache()
        cache.set('events', 'e')
        cache.set('user-relations-vent', 'r')
        cache.set('user-relations-prevent', 'keep')

        assert cache.invalidate_user('vent') == 1
        assert cache.invalidate_user('e') == 0
        assert cache.get('events') == 'e'
        assert cache.get('user-relations-prevent') == 'keep'


class TestResponseCache:
    """Test cases for ResponseCache."""

    def test_no_expiry_and_invalidation(self):
        """Test that only user and response keys are dropped."""
        cache = ResponseCache()
        cache.set('responses', 'x')
        cache.set('friends-u2', 'f')
        cache.set('history-u1', 'h')

        assert cache.invalidate_user('u1') == 2
        assert cache.get('friends-u2') == 'f'
        assert cache.get('responses') is None


class TestDataManager:
    """Test cases for DataManager."""

    def test_reads_are_cached(self):
        """Test that repeated reads hit the client once."""
        client = Mock()
        client.get_events.return_value = ['event']
        client.get_responses.return_value = ['entry']
        manager = DataManager(client)

        assert manager.get_events() == ['event']
        assert manager.get_events() == ['event']
        assert manager.get_responses() == ['entry']
        assert manager.get_responses() == ['entry']

        client.get_events.assert_called_once()
        client.get_responses.assert_called_once()

    def test_invalidate_user_cache_refetches_responses(self):
        """Test that invalidation forces a refetch of the history only."""
        client = Mock()
        client.get_events.return_value = ['event']
        client.get_responses.side_effect = [['old'], ['new']]
        manager = DataManager(client)
        manager.get_events()
        manager.get_responses()

        manager.invalidate_user_cache('u1')

        assert manager.get_responses() == ['new']
        assert manager.get_events() == ['event']
        client.get_events.assert_called_once()

    def test_empty_results_are_cached(self):
        """Test that an empty catalog is cached as a value."""
        client = Mock()
        client.get_events.return_value = []
        manager = DataManager(client)

        manager.get_events()
        manager.get_events()

        client.get_events.assert_called_once()
