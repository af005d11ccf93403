"""
单元测试：可用性跟踪

测试覆盖：
- 状态变化才写事件（幂等）
- 启动时从事件表恢复状态
- 从事件日志重建可用率和宕机记录
- 集群可用率
"""

import threading

import pytest

from conduit_monitor.availability import (
    AvailabilityTracker,
    DatabaseStateStore,
    MemoryStateStore,
    reconstruct_uptime,
)
from conduit_monitor.models import UptimeEvent

DAY = 86400


def event(event_type, timestamp, server_id="s1"):
    return UptimeEvent(server_id=server_id, event_type=event_type, timestamp=timestamp)


class TestReconstructUptime:
    """可用率重建测试"""

    def test_online_whole_window(self):
        """测试：全程在线 -> 100%，无宕机"""
        result = reconstruct_uptime("online", [], since=0, now=DAY)

        assert result.uptime_percent == 100
        assert result.downtime_incidents == []

    def test_no_events_counts_as_offline(self):
        """测试：没有任何事件 -> 0%，一条覆盖整个窗口的未结束宕机"""
        result = reconstruct_uptime(None, [], since=0, now=DAY)

        assert result.uptime_percent == 0
        assert len(result.downtime_incidents) == 1
        incident = result.downtime_incidents[0]
        assert incident.start == 0
        assert incident.end is None
        assert incident.duration == DAY

    def test_recovery_at_midpoint(self):
        """测试：窗口中点恢复 -> 50%，一条已结束宕机"""
        result = reconstruct_uptime("offline", [event("online", DAY // 2)], since=0, now=DAY)

        assert result.uptime_percent == pytest.approx(50)
        assert len(result.downtime_incidents) == 1
        incident = result.downtime_incidents[0]
        assert (incident.start, incident.end, incident.duration) == (0, DAY // 2, DAY // 2)

    def test_two_incidents_in_order(self):
        """测试：两次 1000 秒宕机按时间顺序返回"""
        events = [
            event("offline", 10000),
            event("online", 11000),
            event("offline", 50000),
            event("online", 51000),
        ]
        result = reconstruct_uptime("online", events, since=0, now=DAY)

        assert result.uptime_percent == pytest.approx((DAY - 2000) / DAY * 100)
        assert [(i.start, i.end, i.duration) for i in result.downtime_incidents] == [
            (10000, 11000, 1000),
            (50000, 51000, 1000),
        ]

    def test_trailing_open_incident(self):
        """测试：最后一条事件为离线时宕机记录未结束"""
        result = reconstruct_uptime("online", [event("offline", 80000)], since=0, now=DAY)

        assert result.uptime_percent == pytest.approx(80000 / DAY * 100)
        incident = result.downtime_incidents[-1]
        assert incident.start == 80000
        assert incident.end is None
        assert incident.duration == DAY - 80000

    def test_first_event_inside_window(self):
        """测试：首条事件在窗口内，之前按离线计算"""
        result = reconstruct_uptime(None, [event("online", 21600)], since=0, now=DAY)

        assert result.uptime_percent == pytest.approx(75)
        assert result.downtime_incidents[0].start == 0
        assert result.downtime_incidents[0].end == 21600

    def test_zero_length_window(self):
        result = reconstruct_uptime("online", [], since=DAY, now=DAY)
        assert result.uptime_percent == 0


class TestRecordStatusResult:
    """状态记录测试"""

    def test_idempotent(self, tracker, db):
        """测试：连续两次在线只写一条事件"""
        assert tracker.record_status_result("s1", True) is True
        assert tracker.record_status_result("s1", True) is False

        events = db.query_uptime_events("s1", since=0)
        assert [e.event_type for e in events] == ["online"]

    def test_transitions_append_events(self, tracker, db, clock):
        """测试：每次状态变化写入一条事件，时间来自时钟"""
        tracker.record_status_result("s1", True)
        clock.advance(60)
        tracker.record_status_result("s1", False)
        tracker.record_status_result("s1", False)
        clock.advance(60)
        tracker.record_status_result("s1", True)

        events = db.query_uptime_events("s1", since=0)
        assert [(e.event_type, e.timestamp) for e in events] == [
            ("online", clock.now - 120),
            ("offline", clock.now - 60),
            ("online", clock.now),
        ]

    def test_state_restored_from_database(self, db, clock):
        """测试：新的跟踪器实例从事件表恢复状态，不重复写事件"""
        AvailabilityTracker(db, clock=clock).record_status_result("s1", False)

        restarted = AvailabilityTracker(db, clock=clock)
        assert restarted.initialize_state("s1") == "offline"
        assert restarted.record_status_result("s1", False) is False
        assert len(db.query_uptime_events("s1", since=0)) == 1

    def test_unknown_server_has_no_state(self, tracker):
        assert tracker.initialize_state("nobody") is None
        assert tracker.states.get("nobody") is None

    def test_database_state_store_shared_between_trackers(self, db, clock):
        """测试：共享数据库状态时，多个实例看到同一状态"""
        first = AvailabilityTracker(db, state_store=DatabaseStateStore(db), clock=clock)
        second = AvailabilityTracker(db, state_store=DatabaseStateStore(db), clock=clock)

        assert first.record_status_result("s1", True) is True
        assert second.record_status_result("s1", True) is False
        clock.advance(10)
        assert second.record_status_result("s1", False) is True
        assert first.record_status_result("s1", False) is False

        assert len(db.query_uptime_events("s1", since=0)) == 2

    def test_stale_caches_in_two_processes(self, db, clock):
        """测试：两个实例都认为服务器离线时，同一次恢复只写入一条事件"""
        db.append_uptime_event(event("offline", clock.now - 100))
        first = AvailabilityTracker(db, clock=clock)
        second = AvailabilityTracker(db, clock=clock)
        assert first.initialize_state("s1") == "offline"
        assert second.initialize_state("s1") == "offline"

        assert first.record_status_result("s1", True) is True
        assert second.record_status_result("s1", True) is False

        assert second.states.get("s1") == "online"
        events = db.query_uptime_events("s1", since=0)
        assert [e.event_type for e in events] == ["offline", "online"]

    def test_failed_append_keeps_state(self, tracker, db, monkeypatch):
        """测试：事件写入失败时缓存状态不变，下次重试"""
        tracker.record_status_result("s1", True)

        original_append = db.append_uptime_event_if_changed
        failing = {"enabled": True}

        def _append(event):
            if failing["enabled"]:
                raise RuntimeError("disk full")
            return original_append(event)

        monkeypatch.setattr(db, "append_uptime_event_if_changed", _append)
        with pytest.raises(RuntimeError):
            tracker.record_status_result("s1", False)
        assert tracker.states.get("s1") == "online"

        failing["enabled"] = False
        assert tracker.record_status_result("s1", False) is True

    def test_concurrent_identical_results(self, tracker, db):
        """测试：并发提交相同结果只写一条事件"""
        threads = [
            threading.Thread(target=tracker.record_status_result, args=("s1", True))
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(db.query_uptime_events("s1", since=0)) == 1

    def test_forget(self, tracker):
        tracker.record_status_result("s1", True)
        tracker.forget("s1")
        assert tracker.states.get("s1") is None

    def test_memory_store(self):
        store = MemoryStateStore()
        store.set("s1", "offline")
        assert store.get("s1") == "offline"
        store.remove("s1")
        store.remove("s1")
        assert store.get("s1") is None


class TestComputeUptime:
    """基于事件表的可用率查询测试"""

    def test_event_before_window_sets_initial_state(self, db, clock):
        """测试：窗口起点之前的最后一条事件决定初始状态"""
        now = clock.now
        db.append_uptime_event(event("online", now - 3 * DAY))
        db.append_uptime_event(event("offline", now - 1000))
        tracker = AvailabilityTracker(db, clock=clock)

        result = tracker.compute_uptime("s1", DAY)

        assert result.uptime_percent == pytest.approx((DAY - 1000) / DAY * 100)
        assert len(result.downtime_incidents) == 1
        assert result.downtime_incidents[0].end is None

    def test_server_uptime_unknown_label(self, db, clock):
        """测试：未知标签按 24h 计算，原样返回标签"""
        now = clock.now
        db.append_uptime_event(event("online", now - 2 * DAY))
        db.append_uptime_event(event("offline", now - DAY // 2))
        tracker = AvailabilityTracker(db, clock=clock)

        response = tracker.get_server_uptime("s1", "1y")

        assert response.range == "1y"
        assert response.server_id == "s1"
        assert response.uptime_percent == pytest.approx(50)

    def test_ranges_differ(self, db, clock):
        now = clock.now
        db.append_uptime_event(event("offline", now - 10 * DAY))
        db.append_uptime_event(event("online", now - 5 * DAY))
        tracker = AvailabilityTracker(db, clock=clock)

        assert tracker.get_server_uptime("s1", "24h").uptime_percent == pytest.approx(100)
        assert tracker.get_server_uptime("s1", "7d").uptime_percent == pytest.approx(5 / 7 * 100)


class TestFleetUptime:
    """集群可用率测试"""

    def test_empty_fleet_is_100(self, tracker):
        response = tracker.get_fleet_uptime("24h", server_ids=[])

        assert response.fleet_uptime_percent == 100
        assert response.server_uptimes == []

    def test_mean_of_servers(self, db, clock):
        """测试：集群可用率为各服务器可用率的平均"""
        now = clock.now
        db.append_uptime_event(event("online", now - 2 * DAY, server_id="a"))
        db.append_uptime_event(event("offline", now - 2 * DAY, server_id="b"))
        tracker = AvailabilityTracker(db, clock=clock)

        response = tracker.get_fleet_uptime("24h", server_ids=["a", "b"])

        assert response.range == "24h"
        assert response.fleet_uptime_percent == pytest.approx(50)
        assert {s.server_id: s.uptime_percent for s in response.server_uptimes} == {
            "a": 100,
            "b": 0,
        }

    def test_registered_servers_by_default(self, db, clock):
        server_id = db.create_server("10.0.0.1", 9000, "secret")
        db.append_uptime_event(event("online", clock.now - 2 * DAY, server_id=server_id))
        tracker = AvailabilityTracker(db, clock=clock)

        response = tracker.get_fleet_uptime("7d")

        assert [s.server_id for s in response.server_uptimes] == [server_id]
        assert response.fleet_uptime_percent == pytest.approx(2 / 7 * 100)
