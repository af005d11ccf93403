"""
数据清理任务

定期删除超过保留期的历史快照。可用性事件不清理，
以便任意时间窗口都能找到窗口起点之前的状态。
"""

import asyncio
import logging
import time
from typing import Optional

from .config import get_config
from .database import Database, get_db

logger = logging.getLogger(__name__)


def prune_snapshots(db: Database, retention_hours: int, now: Optional[int] = None) -> int:
    """
    删除早于 now - retention_hours 的快照

    Returns:
        删除的快照数量
    """
    if now is None:
        now = int(time.time())
    cutoff = now - retention_hours * 3600

    deleted = db.delete_snapshots_before(cutoff)
    logger.info(f"Cleanup completed: removed {deleted} snapshots older than {retention_hours}h")
    return deleted


async def run_cleanup():
    """
    运行数据清理任务

    每隔 cleanup_interval_minutes 分钟清理一次；出错只记录日志，
    下一周期继续执行（清理失败不影响聚合和可用率计算的正确性）。
    """
    config = get_config()
    retention_hours = config.retention.hours
    interval_seconds = config.retention.cleanup_interval_minutes * 60

    logger.info(
        f"Starting cleanup task (interval={config.retention.cleanup_interval_minutes}min, "
        f"retention={retention_hours}h)"
    )

    while True:
        try:
            prune_snapshots(get_db(), retention_hours)
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            logger.info("Cleanup task cancelled")
            raise
        except Exception as e:
            logger.error(f"Cleanup error: {e}", exc_info=True)
            await asyncio.sleep(interval_seconds)
