"""Unit tests for the debounced batch writer."""
import asyncio
from unittest.mock import Mock

import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError

from history.models import EVENT_RESPONSE, GOING, BatchAction, BatchResult
from sync.batch_manager import BatchManager, new_action_id

DELAY = 0.2


def make_action(action_id, user_id='u1', event_id='e1', timestamp=0):
    return BatchAction(
        id=action_id,
        type=EVENT_RESPONSE,
        data={'eventId': event_id, 'finalResponse': GOING},
        user_id=user_id,
        timestamp=timestamp
    )


def ok_client():
    client = Mock()
    client.put_batch.side_effect = lambda actions, user_id: BatchResult(
        success=True, processed=len(actions), results=[]
    )
    return client


class TestBatchManager:
    """Test cases for BatchManager."""

    @pytest.mark.asyncio
    async def test_burst_is_flushed_once(self):
        """Test that three quick actions produce one network call."""
        client = ok_client()
        manager = BatchManager(client, delay=DELAY)

        for i in range(3):
            manager.add_action(make_action(f"a{i}"))
            await asyncio.sleep(0.01)

        assert client.put_batch.call_count == 0
        await asyncio.sleep(DELAY * 3)

        client.put_batch.assert_called_once()
        actions, user_id = client.put_batch.call_args.args
        assert [a.id for a in actions] == ['a0', 'a1', 'a2']
        assert user_id == 'u1'
        assert manager.pending_actions == []

    @pytest.mark.asyncio
    async def test_save_now_skips_debounce(self):
        """Test that teardown flushes immediately."""
        client = ok_client()
        manager = BatchManager(client, delay=60)
        manager.add_action(make_action('a0'))

        result = await manager.save_now()

        assert result.success
        assert result.processed == 1
        client.put_batch.assert_called_once()
        assert not manager.has_scheduled_flush

    @pytest.mark.asyncio
    async def test_failure_keeps_actions_pending(self, caplog):
        """Test that a failed write retains actions for the next flush."""
        client = Mock()
        client.put_batch.side_effect = RequestsConnectionError("offline")
        manager = BatchManager(client, delay=60)
        manager.add_action(make_action('a0'))

        result = await manager.save_now()

        assert not result.success
        assert 'offline' in result.error
        assert [a.id for a in manager.pending_actions] == ['a0']
        assert manager.failed_flushes == 1
        assert 'keeping them pending' in caplog.text

        client.put_batch.side_effect = lambda actions, user_id: BatchResult(
            success=True, processed=len(actions), results=[]
        )
        result = await manager.save_now()

        assert result.success
        assert manager.pending_actions == []

    @pytest.mark.asyncio
    async def test_retry_preserves_order_for_same_event(self):
        """Test that a retried action is sent before a later one for the same event."""
        client = Mock()
        client.put_batch.side_effect = RequestsConnectionError("offline")
        manager = BatchManager(client, delay=60)
        manager.add_action(make_action('a0', timestamp=1000))
        await manager.save_now()

        manager.add_action(make_action('a1', timestamp=2000))
        client.put_batch.side_effect = lambda actions, user_id: BatchResult(
            success=True, processed=len(actions), results=[]
        )
        result = await manager.save_now()

        assert result.success
        actions, user_id = client.put_batch.call_args.args
        assert [a.id for a in actions] == ['a0', 'a1']
        assert actions[0].timestamp < actions[1].timestamp
        assert manager.pending_actions == []

    @pytest.mark.asyncio
    async def test_scheduled_flush_failure_is_logged(self, caplog):
        """Test that an error raised by a timer-driven flush is reported."""
        def on_flushed(actions):
            raise RuntimeError("listener broke")

        manager = BatchManager(ok_client(), delay=0.01, on_flushed=on_flushed)
        manager.add_action(make_action('a0'))

        await asyncio.sleep(0.2)

        assert 'Scheduled batch flush failed: listener broke' in caplog.text
        assert not manager.has_scheduled_flush

    @pytest.mark.asyncio
    async def test_only_acknowledged_actions_are_removed(self):
        """Test that actions added during a flush stay pending."""
        manager = None
        client = Mock()

        def put_batch(actions, user_id):
            # Runs in a worker thread while the flush awaits it
            loop.call_soon_threadsafe(manager.add_action, make_action('late'))
            return BatchResult(success=True, processed=len(actions), results=[])

        client.put_batch.side_effect = put_batch
        loop = asyncio.get_running_loop()
        manager = BatchManager(client, delay=60)
        manager.add_action(make_action('a0'))

        await manager.save_now()
        await asyncio.sleep(0)

        assert [a.id for a in manager.pending_actions] == ['late']
        manager.discard_pending()

    @pytest.mark.asyncio
    async def test_on_flushed_receives_acknowledged_actions(self):
        """Test the flush callback."""
        flushed = []
        manager = BatchManager(ok_client(), delay=60, on_flushed=flushed.extend)
        manager.add_action(make_action('a0'))
        manager.add_action(make_action('a1', user_id='u2'))

        result = await manager.save_now()

        assert result.processed == 2
        assert [a.id for a in flushed] == ['a0', 'a1']

    @pytest.mark.asyncio
    async def test_flush_with_nothing_pending(self):
        """Test that an empty flush does not call the store."""
        client = ok_client()
        manager = BatchManager(client, delay=60)

        assert await manager.save_now() is None
        client.put_batch.assert_not_called()

    @pytest.mark.asyncio
    async def test_discard_pending(self):
        """Test dropping pending actions."""
        manager = BatchManager(ok_client(), delay=60)
        manager.add_action(make_action('a0'))

        assert manager.discard_pending() == 1
        assert manager.pending_actions == []
        assert not manager.has_scheduled_flush


def test_new_action_id_format():
    """Test generated action ids."""
    action_id = new_action_id(EVENT_RESPONSE)

    prefix, millis, suffix = action_id.rsplit('_', 2)
    assert prefix == EVENT_RESPONSE
    assert millis.isdigit()
    assert len(suffix) == 9
    assert new_action_id(EVENT_RESPONSE) != action_id
