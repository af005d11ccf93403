"""
可用性跟踪

每台服务器只有 online / offline 两种状态。拉取结果只在状态变化时
写入一条事件；可用率和宕机记录总是从事件日志实时重建，不单独存储。
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence

from .database import Database, get_db
from .models import (
    DowntimeIncident,
    EventType,
    FleetUptimeResponse,
    ServerUptimeResponse,
    ServerUptimeSummary,
    UptimeEvent,
    UptimeResult,
)
from .ranges import resolve_uptime_range

logger = logging.getLogger(__name__)


# =============================================================================
# 状态缓存
# =============================================================================

class MemoryStateStore:
    """
    进程内状态缓存：{server_id: 最近一次事件类型}

    只在单进程部署下正确；多实例部署请使用 DatabaseStateStore。
    """

    def __init__(self):
        self._states: Dict[str, EventType] = {}
        self._lock = threading.Lock()

    def get(self, server_id: str) -> Optional[EventType]:
        with self._lock:
            return self._states.get(server_id)

    def set(self, server_id: str, state: EventType):
        with self._lock:
            self._states[server_id] = state

    def remove(self, server_id: str):
        with self._lock:
            self._states.pop(server_id, None)


class DatabaseStateStore:
    """
    每次都从事件表读取最近状态（多实例共享同一数据库时使用）

    这里的读取只用于跳过明显无变化的拉取；是否真正写入事件由
    Database.append_uptime_event_if_changed 在一条语句内判断，
    两个进程同时看到旧状态时也只会有一个写入成功。
    """

    def __init__(self, db: Database):
        self._db = db

    def get(self, server_id: str) -> Optional[EventType]:
        event = self._db.get_latest_event(server_id)
        return event.event_type if event else None

    def set(self, server_id: str, state: EventType):
        # 事件已写入数据库，无需额外保存
        pass

    def remove(self, server_id: str):
        pass


# =============================================================================
# 重建可用率
# =============================================================================

def reconstruct_uptime(
    prior_state: Optional[EventType],
    events: Sequence[UptimeEvent],
    since: int,
    now: int
) -> UptimeResult:
    """
    从有序事件列表重建时间窗口 [since, now] 内的可用性

    Args:
        prior_state: since 之前最后一条事件的类型；None 表示没有记录，按离线处理
        events: since（含）之后的事件，按时间升序
        since: 窗口起点
        now: 窗口终点

    Returns:
        UptimeResult，宕机记录按时间顺序排列；仍未恢复的记录 end 为 None
    """
    current_state: EventType = prior_state or "offline"
    online_time = 0
    last_timestamp = since
    incidents: List[DowntimeIncident] = []
    incident_start: Optional[int] = since if current_state == "offline" else None

    for event in events:
        if current_state == "online":
            online_time += event.timestamp - last_timestamp

        if event.event_type == "offline" and current_state == "online":
            incident_start = event.timestamp
        elif event.event_type == "online" and current_state == "offline" and incident_start is not None:
            incidents.append(DowntimeIncident(
                start=incident_start,
                end=event.timestamp,
                duration=event.timestamp - incident_start
            ))
            incident_start = None

        current_state = event.event_type
        last_timestamp = event.timestamp

    # 最后一条事件到当前时间
    if current_state == "online":
        online_time += now - last_timestamp
    elif incident_start is not None:
        incidents.append(DowntimeIncident(
            start=incident_start,
            end=None,
            duration=now - incident_start
        ))

    total_range = now - since
    uptime_percent = online_time / total_range * 100 if total_range > 0 else 0.0

    return UptimeResult(uptime_percent=uptime_percent, downtime_incidents=incidents)


# =============================================================================
# 跟踪器
# =============================================================================

class AvailabilityTracker:
    """
    可用性跟踪器

    record_status_result 的"读状态 - 比较 - 写事件 - 更新状态"在同一把锁内完成，
    避免并发拉取同一服务器时写入重复或乱序的事件。
    调用方需保证同一服务器的拉取结果按拉取顺序提交。
    """

    def __init__(
        self,
        db: Database,
        state_store=None,
        clock: Callable[[], float] = time.time
    ):
        self.db = db
        self.states = state_store if state_store is not None else MemoryStateStore()
        self._clock = clock
        self._lock = threading.Lock()

    def _now(self) -> int:
        return int(self._clock())

    def initialize_state(self, server_id: str) -> Optional[EventType]:
        """从事件表加载服务器的最近状态（已知时不重复加载）"""
        state = self.states.get(server_id)
        if state is not None:
            return state

        event = self.db.get_latest_event(server_id)
        if event is None:
            return None

        self.states.set(server_id, event.event_type)
        return event.event_type

    def record_status_result(self, server_id: str, is_reachable: bool) -> bool:
        """
        记录一次拉取结果

        Returns:
            是否写入了新事件（状态未变化时为 False）
        """
        new_state: EventType = "online" if is_reachable else "offline"

        with self._lock:
            prev_state = self.initialize_state(server_id)
            if prev_state == new_state:
                return False

            # 写入失败时直接抛出，状态缓存保持不变，下次拉取会重试
            appended = self.db.append_uptime_event_if_changed(UptimeEvent(
                server_id=server_id,
                event_type=new_state,
                timestamp=self._now()
            ))
            self.states.set(server_id, new_state)

        if not appended:
            # 其他进程已写入同样的状态变化
            logger.debug(f"Server {server_id} {new_state} already recorded")
            return False
        if prev_state is None:
            logger.info(f"Server {server_id} first seen {new_state}")
        elif new_state == "offline":
            logger.warning(f"Server {server_id} went offline")
        else:
            logger.info(f"Server {server_id} came back online")
        return True

    def forget(self, server_id: str):
        """移除服务器的缓存状态（服务器被删除时调用）"""
        self.states.remove(server_id)

    def compute_uptime(
        self,
        server_id: str,
        range_seconds: int,
        now: Optional[int] = None
    ) -> UptimeResult:
        """计算服务器在最近 range_seconds 秒内的可用性"""
        if now is None:
            now = self._now()
        since = now - range_seconds

        prior = self.db.get_last_event_before(server_id, since)
        events = self.db.query_uptime_events(server_id, since)

        return reconstruct_uptime(
            prior.event_type if prior else None,
            events,
            since,
            now
        )

    def get_server_uptime(
        self,
        server_id: str,
        range_label: str,
        now: Optional[int] = None
    ) -> ServerUptimeResponse:
        """单台服务器可用性（未知标签按 24h 处理，标签原样返回）"""
        result = self.compute_uptime(server_id, resolve_uptime_range(range_label), now)
        return ServerUptimeResponse(
            server_id=server_id,
            range=range_label,
            uptime_percent=result.uptime_percent,
            downtime_incidents=result.downtime_incidents
        )

    def get_fleet_uptime(
        self,
        range_label: str,
        server_ids: Optional[Sequence[str]] = None,
        now: Optional[int] = None
    ) -> FleetUptimeResponse:
        """
        集群可用性：各服务器可用率的算术平均

        没有服务器时返回 100%。
        """
        if server_ids is None:
            server_ids = self.db.get_server_ids()
        if now is None:
            now = self._now()
        range_seconds = resolve_uptime_range(range_label)

        summaries = [
            ServerUptimeSummary(
                server_id=server_id,
                uptime_percent=self.compute_uptime(server_id, range_seconds, now).uptime_percent
            )
            for server_id in server_ids
        ]

        if summaries:
            fleet_uptime = sum(s.uptime_percent for s in summaries) / len(summaries)
        else:
            fleet_uptime = 100.0

        return FleetUptimeResponse(
            range=range_label,
            fleet_uptime_percent=fleet_uptime,
            server_uptimes=summaries
        )


# 全局跟踪器实例（延迟加载）
_tracker: Optional[AvailabilityTracker] = None


def get_tracker() -> AvailabilityTracker:
    """获取全局可用性跟踪器"""
    global _tracker
    if _tracker is None:
        _tracker = AvailabilityTracker(get_db())
    return _tracker


def reset_tracker():
    """重置跟踪器（主要用于测试）"""
    global _tracker
    _tracker = None
