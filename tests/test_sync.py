"""Tests for the log infrastructure."""

import asyncio
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from gridsync.events import InSync, LocalMove, LocalPress, LocalRelease, PublishUpdate
from gridsync.grid import Cell
from gridsync.marks import Brush, Mark, MarkKind
from gridsync.replica import Replica
from gridsync.snapshot import SnapshotStore
from gridsync.sync import LocalHub, LogFollower, UpdateLog
from gridsync.wire import Update

SET = Mark.of_bool(True)


@pytest.fixture
def update_log():
    """Create an in-memory update log."""
    log = UpdateLog(":memory:", MarkKind.BOOL)
    log.connect()
    yield log
    log.close()


def make_replica(name="test-node"):
    return Replica(4, 4, MarkKind.BOOL, Brush(SET), name=name)


def append_corrupt(log, count=1):
    """Store entries whose payload cannot be decoded."""
    for _ in range(count):
        log._conn.execute(
            "INSERT INTO update_log (sender, payload, created_at) VALUES (?, ?, ?)",
            ("b", b"\xff", datetime.now().isoformat()),
        )
    log._conn.commit()


class TestUpdateLogSchema:
    """Tests for log schema initialization."""

    def test_connect_creates_table(self, update_log):
        tables = update_log._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()

        assert "update_log" in [t[0] for t in tables]

    def test_empty_log(self, update_log):
        assert update_log.max_serial() == 0
        assert list(update_log.deliveries_since(0)) == []


class TestUpdateLogAppend:
    """Tests for appending and reading back entries."""

    def test_serials_increase(self, update_log):
        """Test each append gets the next serial."""
        serials = [update_log.append(Update((i,), SET, i + 1), sender="a") for i in range(3)]

        assert serials == [1, 2, 3]
        assert update_log.max_serial() == 3

    def test_records_since(self, update_log):
        for i in range(3):
            update_log.append(Update((i,), SET, i + 1), sender="a")

        records = update_log.get_records_since(1)

        assert [r.serial for r in records] == [2, 3]
        assert records[0].update == Update((1,), SET, 2)
        assert records[0].sender == "a"
        assert isinstance(records[0].created_at, datetime)

    def test_deliveries_carry_max_serial(self, update_log):
        """Test every delivery reports the newest serial in the log."""
        for i in range(3):
            update_log.append(Update((i,), SET, i + 1), sender="a")

        deliveries = list(update_log.deliveries_since(0))

        assert [d.serial for d in deliveries] == [1, 2, 3]
        assert all(d.max_serial == 3 for d in deliveries)
        assert deliveries[-1].to_event().serial == 3

    def test_limit(self, update_log):
        for i in range(5):
            update_log.append(Update((i,), SET, i + 1), sender="a")

        assert len(update_log.get_records_since(0, limit=2)) == 2

    def test_undecodable_entry_skipped(self, update_log):
        """Test a corrupt payload does not stop delivery."""
        update_log.append(Update((0,), SET, 1), sender="a")
        append_corrupt(update_log)
        update_log.append(Update((1,), SET, 2), sender="a")

        assert [r.serial for r in update_log.get_records_since(0)] == [1, 3]

    def test_undecodable_entry_delivered_without_update(self, update_log):
        """Test subscribers still receive the serial of a corrupt entry."""
        update_log.append(Update((0,), SET, 1), sender="a")
        append_corrupt(update_log)

        deliveries = list(update_log.deliveries_since(0))

        assert [d.serial for d in deliveries] == [1, 2]
        assert deliveries[1].update is None
        assert deliveries[1].to_event().max_serial == 2

    def test_stats(self, update_log):
        update_log.append(Update((0,), SET, 1), sender="a")
        update_log.append(Update((1,), SET, 2), sender="b")
        update_log.append(Update((2,), SET, 3), sender="a")

        stats = update_log.get_stats()

        assert stats["total_entries"] == 3
        assert stats["max_serial"] == 3
        assert stats["entries_by_sender"] == {"a": 2, "b": 1}


class TestLogFollower:
    """Tests for following the log."""

    def test_poll_delivers_in_order(self, update_log):
        """Test polling applies every pending entry."""
        replica = make_replica()
        effects = []
        follower = LogFollower(update_log, replica, effects.append, batch_size=2)

        for i in range(5):
            update_log.append(Update((i,), SET, i + 1), sender="peer")

        assert follower.poll() == 5
        assert replica.last_serial == 5
        assert replica.grid.painted_count() == 5
        assert follower.poll() == 0

    def test_poll_forwards_in_sync(self, update_log):
        """Test catch-up notices reach the effect handler."""
        replica = make_replica()
        effects = []
        follower = LogFollower(update_log, replica, effects.append)

        update_log.append(Update((0,), SET, 1), sender="peer")
        follower.poll()
        update_log.append(Update((1,), SET, 2), sender="peer")
        follower.poll()

        assert effects == [InSync(2)]

    def test_poll_moves_past_full_batch_of_corrupt_entries(self, update_log):
        """Test a batch of undecodable entries does not stall the follower."""
        replica = make_replica()
        follower = LogFollower(update_log, replica, lambda effect: None, batch_size=3)
        append_corrupt(update_log, count=3)
        update_log.append(Update((0,), SET, 1), sender="peer")

        assert follower.poll() == 4
        assert replica.last_serial == 4
        assert replica.grid[0] == Cell(SET, 1)

    def test_corrupt_newest_entry_still_catches_up(self, update_log):
        """Test catch-up and snapshotting happen when the last entry is undecodable."""
        snapshots = MagicMock(spec=SnapshotStore)
        snapshots.load.return_value = None
        snapshots.save.return_value = True
        replica = Replica(4, 4, MarkKind.BOOL, Brush(SET), snapshots=snapshots)
        follower = LogFollower(update_log, replica, lambda effect: None)
        update_log.append(Update((0,), SET, 1), sender="peer")
        append_corrupt(update_log)

        follower.poll()

        assert replica.last_serial == 2
        snapshots.save.assert_called_once()
        assert snapshots.save.call_args.args[0].serial == 2

    def test_follow_status(self, update_log):
        replica = make_replica()
        follower = LogFollower(update_log, replica, lambda effect: None)
        update_log.append(Update((0,), SET, 1), sender="peer")

        follower.poll()
        status = follower.get_follow_status()

        assert status["delivered"] == 1
        assert status["last_serial"] == 1
        assert status["log_max_serial"] == 1
        assert status["last_poll"] is not None

    @pytest.mark.asyncio
    async def test_follow_loop_stops(self, update_log):
        """Test the loop polls until the stop event is set."""
        replica = make_replica()
        follower = LogFollower(update_log, replica, lambda effect: None)
        stop_event = asyncio.Event()
        update_log.append(Update((0,), SET, 1), sender="peer")

        task = asyncio.create_task(follower.follow_loop(0.01, stop_event=stop_event))
        await asyncio.sleep(0.05)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert replica.last_serial == 1


class TestLocalHub:
    """Tests for the in-process hub."""

    def test_stroke_reaches_all_replicas(self, update_log):
        hub = LocalHub(update_log)
        hub.attach(make_replica("a"))
        hub.attach(make_replica("b"))

        hub.send("a", LocalPress(0, 0))
        hub.send("a", LocalMove(1, 0))
        effects = hub.send("a", LocalRelease())
        hub.pump()

        assert isinstance(effects[0], PublishUpdate)
        assert hub.published == 1
        assert hub.replicas["b"].grid.values()[:2] == [SET, SET]
        assert hub.converged()

    def test_previews_go_to_other_replicas(self, update_log):
        """Test previews are fanned out to peers but not echoed."""
        hub = LocalHub(update_log)
        hub.attach(make_replica("a"))
        hub.attach(make_replica("b"))

        hub.send("a", LocalPress(2, 0))
        assert hub.pump_previews() == 1
        assert hub.replicas["b"].render_value(2) == SET
        assert hub.replicas["b"].grid[2].value.is_empty

    def test_lost_previews(self, update_log):
        hub = LocalHub(update_log, preview_loss=1.0, seed=1)
        hub.attach(make_replica("a"))
        hub.attach(make_replica("b"))

        hub.send("a", LocalPress(2, 0))

        assert hub.pump_previews() == 0

    def test_partial_pump_then_converge(self, update_log):
        """Test replicas converge once every entry is delivered."""
        hub = LocalHub(update_log)
        for name in ("a", "b", "c"):
            hub.attach(make_replica(name))

        for name, (x, y) in zip(("a", "b", "c"), [(0, 0), (0, 0), (1, 1)]):
            hub.send(name, LocalPress(x, y))
            hub.send(name, LocalRelease())
            hub.pump([name])

        assert not hub.converged()
        hub.pump()
        assert hub.converged()
        assert ("a", 3) in hub.in_sync_events

    def test_pump_passes_corrupt_entries(self, update_log):
        hub = LocalHub(update_log)
        hub.attach(make_replica("a"))
        append_corrupt(update_log, count=2)
        update_log.append(Update((3,), SET, 1), sender="peer")

        assert hub.pump() == 3
        assert hub.replicas["a"].last_serial == 3
        assert hub.replicas["a"].grid[3].value == SET

    def test_attach_twice_rejected(self, update_log):
        hub = LocalHub(update_log)
        replica = make_replica("a")
        hub.attach(replica)

        with pytest.raises(ValueError):
            hub.attach(replica)
