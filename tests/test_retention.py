"""
单元测试：快照清理
"""

import asyncio

import pytest

from conduit_monitor.database import get_db
from conduit_monitor.models import MetricsSnapshot, UptimeEvent
from conduit_monitor.retention import prune_snapshots, run_cleanup


class TestPruneSnapshots:
    """按保留期删除快照"""

    def test_removes_only_expired(self, db):
        now = 1_700_000_000
        for ts in (now - 7200, now - 3601, now - 3600, now - 10):
            db.save_snapshot(MetricsSnapshot(server_id="s1", timestamp=ts))

        deleted = prune_snapshots(db, retention_hours=1, now=now)

        assert deleted == 2
        assert [s.timestamp for s in db.query_snapshots()] == [now - 3600, now - 10]

    def test_events_untouched(self, db):
        """测试：可用性事件不随快照清理"""
        db.append_uptime_event(UptimeEvent(server_id="s1", event_type="online", timestamp=0))
        db.save_snapshot(MetricsSnapshot(server_id="s1", timestamp=0))

        prune_snapshots(db, retention_hours=1, now=1_700_000_000)

        assert db.query_snapshots() == []
        assert len(db.query_uptime_events("s1", since=0)) == 1

    def test_nothing_to_delete(self, db):
        assert prune_snapshots(db, retention_hours=24, now=1_700_000_000) == 0


def test_run_cleanup_prunes_then_cancels(monkeypatch):
    """测试：清理任务启动即执行一次，取消时抛出 CancelledError"""
    monkeypatch.setenv("CONDUIT_MONITOR_RETENTION__HOURS", "1")
    db = get_db()
    db.save_snapshot(MetricsSnapshot(server_id="s1", timestamp=100))

    async def scenario():
        task = asyncio.create_task(run_cleanup())
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert db.query_snapshots() == []
