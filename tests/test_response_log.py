"""Unit tests for the in-memory response log."""
from datetime import timedelta

from history.models import GOING, NEW, SEEN
from history.response_log import ResponseLog


class TestResponseLog:
    """Test cases for ResponseLog."""

    def test_append_assigns_id_and_timestamp(self, now):
        """Test that append creates a pending entry stamped by the clock."""
        log = ResponseLog(clock=lambda: now)

        entry = log.append('u1', 'e1', NEW, SEEN)

        assert entry.id.startswith('resp_')
        assert entry.created_at == now
        assert len(log) == 1
        assert log.pending_ids == {entry.id}
        assert log.current_response('u1', 'e1') == SEEN

    def test_timestamps_strictly_increase(self, now):
        """Test that entries created within the same instant stay ordered."""
        log = ResponseLog(clock=lambda: now)

        first = log.append('u1', 'e1', NEW, SEEN)
        second = log.append('u1', 'e1', SEEN, GOING)

        assert second.created_at == first.created_at + timedelta(milliseconds=1)
        assert log.current_response('u1', 'e1') == GOING

    def test_iteration_order(self, now, make_entry):
        """Test that remote entries come before local ones."""
        remote = [make_entry('r1', SEEN, now - timedelta(days=1))]
        log = ResponseLog(remote, clock=lambda: now)
        local = log.append('u1', 'e1', SEEN, GOING)

        assert [e.id for e in log] == ['r1', local.id]

    def test_replace_remote_keeps_unacknowledged(self, now, make_entry):
        """Test that a refetch never drops an entry still in flight."""
        log = ResponseLog(clock=lambda: now)
        acked = log.append('u1', 'e1', NEW, SEEN)
        pending = log.append('u1', 'e2', NEW, GOING)
        log.mark_flushed([acked.id])

        snapshot = [make_entry(acked.id, SEEN, acked.created_at, initial_response=NEW)]
        log.replace_remote(snapshot)

        ids = [e.id for e in log]
        assert ids == [acked.id, pending.id]
        assert log.pending_ids == {pending.id}
        assert log.current_response('u1', 'e2') == GOING

    def test_latest_entry_absent(self):
        """Test reads for a pair without history."""
        log = ResponseLog()

        assert log.latest_entry('u1', 'e1') is None
        assert log.current_response('u1', 'e1') is None

    def test_replace_remote_keeps_acknowledged_until_snapshot_catches_up(self, now, make_entry):
        """Test that a lagging snapshot does not revert an acknowledged entry."""
        older = make_entry('r1', SEEN, now - timedelta(days=1))
        log = ResponseLog([older], clock=lambda: now)
        local = log.append('u1', 'e1', SEEN, GOING)
        log.mark_flushed([local.id])

        log.replace_remote([older])

        assert log.current_response('u1', 'e1') == GOING
        assert [e.id for e in log] == ['r1', local.id]

        caught_up = make_entry('r2', GOING, now, initial_response=SEEN)
        log.replace_remote([older, caught_up])

        assert [e.id for e in log] == ['r1', 'r2']
        assert log.current_response('u1', 'e1') == GOING
