"""
Agent 采集循环

每隔 interval 秒拉取所有服务器的 Agent 状态：
- 成功：归一化快照并入库，记录在线
- 失败（认证失败、启动中、超时、连接失败等）：记录离线

每台服务器最近一次的拉取结果保存在 StatusBoard 中，供 /api/servers/{id}/status 读取。
"""

import asyncio
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import httpx

from .availability import AvailabilityTracker, get_tracker
from .config import get_config
from .database import get_db
from .models import ServerStatus
from .normalizer import normalize

logger = logging.getLogger(__name__)

AUTH_HEADER = "X-Conduit-Auth"


# =============================================================================
# 最近状态
# =============================================================================

class StatusBoard:
    """进程内保存每台服务器最近一次拉取结果：{server_id: ServerStatus}"""

    def __init__(self):
        self._statuses: Dict[str, ServerStatus] = {}
        self._lock = threading.Lock()

    def update(self, status: ServerStatus):
        with self._lock:
            self._statuses[status.server_id] = status

    def get(self, server_id: str) -> ServerStatus:
        """没有记录时返回 online=None 的空状态"""
        with self._lock:
            status = self._statuses.get(server_id)
        return status if status is not None else ServerStatus(server_id=server_id)

    def remove(self, server_id: str):
        with self._lock:
            self._statuses.pop(server_id, None)


# 全局状态板（延迟加载）
_board: Optional[StatusBoard] = None


def get_status_board() -> StatusBoard:
    """获取全局状态板"""
    global _board
    if _board is None:
        _board = StatusBoard()
    return _board


def reset_status_board():
    """重置状态板（主要用于测试）"""
    global _board
    _board = None


# =============================================================================
# 拉取与处理
# =============================================================================

async def fetch_agent_status(
    host: str,
    port: int,
    secret: str,
    timeout: float = 5.0
) -> Any:
    """
    拉取单个 Agent 的状态报告

    Args:
        host: Agent IP/域名
        port: Agent 端口
        secret: Agent 认证密钥
        timeout: 超时时间（秒）

    Returns:
        Agent 返回的 JSON

    Raises:
        httpx.HTTPStatusError: Agent 返回非 2xx
        httpx.HTTPError: 超时、连接失败等
        ValueError: 响应不是合法 JSON
    """
    url = f"http://{host}:{port}/status"
    headers = {AUTH_HEADER: secret}

    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(url, headers=headers)
        response.raise_for_status()
        return response.json()


def _server_removed(server_id: str, tracker: AvailabilityTracker) -> bool:
    """拉取期间服务器可能已被删除，此时丢弃结果，避免写入孤立数据"""
    if tracker.db.get_server_by_id(server_id) is None:
        logger.info(f"Server {server_id} was removed during polling, discarding result")
        return True
    return False


def process_status(
    server: Dict[str, Any],
    report: Any,
    tracker: AvailabilityTracker,
    stale_threshold: int = 60,
    now: Optional[int] = None,
    board: Optional[StatusBoard] = None
) -> Optional[ServerStatus]:
    """
    处理成功拉取的状态报告

    快照写入失败只记录日志，不影响在线状态的记录。

    Returns:
        最新状态（stale 表示 Agent 时间戳落后超过 stale_threshold 秒）；
        服务器已被删除时返回 None
    """
    if now is None:
        now = int(time.time())
    board = board or get_status_board()
    server_id = server["id"]

    if _server_removed(server_id, tracker):
        return None

    snapshot = normalize(server_id, report, now=now)

    try:
        tracker.db.save_snapshot(snapshot)
    except Exception as e:
        logger.warning(f"Failed to store snapshot for server {server_id}: {e}")

    agent_id = report.get("server_id") if isinstance(report, dict) else None
    if isinstance(agent_id, str) and agent_id and agent_id != server.get("agent_id"):
        try:
            tracker.db.update_agent_id(server_id, agent_id)
            logger.info(f"Server {server_id} reports agent id {agent_id}")
        except Exception as e:
            logger.warning(f"Failed to update agent id for server {server_id}: {e}")

    tracker.record_status_result(server_id, True)

    stale = now - snapshot.timestamp > stale_threshold
    if stale:
        logger.warning(
            f"Server {server_id} returned stale data "
            f"({now - snapshot.timestamp}s old)"
        )

    status = ServerStatus(
        server_id=server_id,
        online=True,
        stale=stale,
        checked_at=now,
        report=report if isinstance(report, dict) else None
    )
    board.update(status)
    return status


def process_failure(
    server: Dict[str, Any],
    reason: str,
    tracker: AvailabilityTracker,
    agent_status: Optional[int] = None,
    now: Optional[int] = None,
    board: Optional[StatusBoard] = None
) -> Optional[ServerStatus]:
    """处理拉取失败：记录离线（服务器已被删除时返回 None）"""
    if now is None:
        now = int(time.time())
    board = board or get_status_board()
    server_id = server["id"]
    label = server.get("label") or server_id

    if _server_removed(server_id, tracker):
        return None

    logger.warning(f"Failed to fetch server {label}: {reason}")
    tracker.record_status_result(server_id, False)

    status = ServerStatus(
        server_id=server_id,
        online=False,
        error=reason,
        agent_status=agent_status,
        checked_at=now
    )
    board.update(status)
    return status


def classify_failure(error: Exception) -> Tuple[str, Optional[int]]:
    """
    把拉取异常归类为失败原因

    Returns:
        (原因, Agent HTTP 状态码)
    """
    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        if status_code == 401:
            return "auth_failed", status_code
        if status_code == 503:
            return "starting_up", status_code
        return "agent_error", status_code
    if isinstance(error, httpx.TimeoutException):
        return "timeout", None
    if isinstance(error, ValueError):
        return "invalid_response", None
    return "offline", None


async def collect_single_server(
    server: Dict[str, Any],
    timeout: float,
    tracker: Optional[AvailabilityTracker] = None,
    stale_threshold: int = 60,
    board: Optional[StatusBoard] = None
) -> Optional[ServerStatus]:
    """采集单个服务器，返回最新状态"""
    tracker = tracker or get_tracker()

    try:
        report = await fetch_agent_status(
            host=server["host"],
            port=server["port"],
            secret=server["secret"],
            timeout=timeout
        )
    except (httpx.HTTPError, ValueError) as e:
        reason, agent_status = classify_failure(e)
        if reason == "offline":
            logger.debug(f"Connection to server {server['id']} failed: {e}")
        return process_failure(server, reason, tracker, agent_status=agent_status, board=board)

    return process_status(server, report, tracker, stale_threshold=stale_threshold, board=board)


def initialize_all_states(tracker: Optional[AvailabilityTracker] = None):
    """
    从事件表加载所有服务器的最近状态（用于服务启动时初始化）

    没有任何事件的服务器保持未知状态，首次拉取结果会直接写入一条事件。
    """
    tracker = tracker or get_tracker()
    server_ids = tracker.db.get_server_ids()

    for server_id in server_ids:
        tracker.initialize_state(server_id)

    logger.info(f"Initialized availability state for {len(server_ids)} servers")


async def run_collector():
    """
    运行采集循环

    每隔 interval 秒并发拉取所有服务器。
    """
    config = get_config()
    interval = config.collector.interval
    timeout = config.collector.timeout
    stale_threshold = config.collector.stale_threshold

    logger.info(f"Starting collector loop (interval={interval}s, timeout={timeout}s)")

    while True:
        try:
            servers = get_db().get_all_servers()

            if servers:
                tasks = [
                    collect_single_server(server, timeout, stale_threshold=stale_threshold)
                    for server in servers
                ]
                results = await asyncio.gather(*tasks, return_exceptions=True)

                for server, result in zip(servers, results):
                    if isinstance(result, Exception):
                        logger.error(f"Failed to process server {server['id']}: {result}")

                logger.debug(f"Collected data from {len(servers)} servers")

        except asyncio.CancelledError:
            logger.info("Collector task cancelled")
            raise
        except Exception as e:
            logger.error(f"Collector loop error: {e}", exc_info=True)

        await asyncio.sleep(interval)
