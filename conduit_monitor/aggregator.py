"""
历史指标聚合

将原始快照按时间桶聚合为图表数据点：
1. 按 (时间桶, 服务器) 分组，同一服务器在桶内的多个快照取平均
2. 同一时间桶内跨服务器合并：CPU 百分比取平均，其余可累加指标求和
3. 超过上限时按步长降采样
"""

import logging
import math
import time
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, TypeVar

from .config import get_config
from .database import Database
from .models import (
    AggregatedHistoryResponse,
    CountryConnections,
    MetricsDataPoint,
    MetricsSnapshot,
    ServerHistoryResponse,
)
from .ranges import resolve_history_range

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 桶内取平均、跨服务器求和的字段（CPU 百分比单独处理）
ADDITIVE_FIELDS = (
    "system_memory_used",
    "system_memory_total",
    "system_net_in",
    "system_net_out",
    "total_connections",
    "unique_ips",
    "container_count",
    "total_container_cpu",
    "total_container_memory",
)

AVERAGED_FIELDS = ("system_cpu",) + ADDITIVE_FIELDS


def bucket_size_for_range(range_seconds: int) -> int:
    """
    根据查询范围选择时间桶宽度（秒）

    - 0（全部历史）: 900s
    - 超过 24h: 300s
    - 其他: 30s
    """
    if range_seconds == 0:
        return 900
    if range_seconds > 86400:
        return 300
    return 30


def bucket_timestamp(timestamp: int, bucket_size: int) -> int:
    """时间戳向下对齐到桶起点"""
    return (timestamp // bucket_size) * bucket_size


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _sorted_countries(totals: Dict[str, int]) -> List[CountryConnections]:
    """按连接数降序排列"""
    return [
        CountryConnections(country=country, connections=connections)
        for country, connections in sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
    ]


def collapse_server_bucket(
    snapshots: Sequence[MetricsSnapshot],
    bucket_ts: int
) -> MetricsDataPoint:
    """
    合并同一服务器在同一时间桶内的多个快照

    所有数值字段取算术平均；国家连接数先按国家求和，
    再除以快照数并四舍五入（即每次拉取的平均连接数）。
    """
    n = len(snapshots)

    country_totals: Dict[str, int] = {}
    for snapshot in snapshots:
        for item in snapshot.clients_by_country:
            country_totals[item.country] = country_totals.get(item.country, 0) + item.connections
    averaged_countries = {
        country: _round_half_up(total / n) for country, total in country_totals.items()
    }

    values = {
        field: sum(getattr(s, field) for s in snapshots) / n
        for field in AVERAGED_FIELDS
    }

    return MetricsDataPoint(
        bucket_timestamp=bucket_ts,
        clients_by_country=_sorted_countries(averaged_countries),
        **values
    )


def combine_servers(
    points: Sequence[MetricsDataPoint],
    bucket_ts: int
) -> MetricsDataPoint:
    """
    跨服务器合并同一时间桶的数据点

    CPU 百分比取平均（百分比相加没有意义），
    其余指标及国家连接数直接求和。
    """
    num_servers = len(points)

    country_totals: Dict[str, int] = {}
    for point in points:
        for item in point.clients_by_country:
            country_totals[item.country] = country_totals.get(item.country, 0) + item.connections

    values = {field: sum(getattr(p, field) for p in points) for field in ADDITIVE_FIELDS}

    return MetricsDataPoint(
        bucket_timestamp=bucket_ts,
        system_cpu=sum(p.system_cpu for p in points) / num_servers,
        clients_by_country=_sorted_countries(country_totals),
        **values
    )


def aggregate_snapshots(
    snapshots: Sequence[MetricsSnapshot],
    range_seconds: int
) -> List[MetricsDataPoint]:
    """
    两级聚合

    Args:
        snapshots: 原始快照（可包含多台服务器）
        range_seconds: 查询范围（秒），用于选择桶宽度

    Returns:
        按桶时间升序排列的数据点，每个桶一个
    """
    bucket_size = bucket_size_for_range(range_seconds)

    # {bucket_ts: {server_id: [snapshot, ...]}}
    buckets: Dict[int, Dict[str, List[MetricsSnapshot]]] = defaultdict(lambda: defaultdict(list))
    for snapshot in snapshots:
        key = bucket_timestamp(snapshot.timestamp, bucket_size)
        buckets[key][snapshot.server_id].append(snapshot)

    aggregated = []
    for bucket_ts in sorted(buckets):
        per_server = [
            collapse_server_bucket(server_snapshots, bucket_ts)
            for server_snapshots in buckets[bucket_ts].values()
        ]
        aggregated.append(combine_servers(per_server, bucket_ts))

    return aggregated


def downsample(points: Sequence[T], max_points: int) -> List[T]:
    """
    按步长降采样

    选取下标 floor(i * len / max_points)（i ∈ [0, max_points)），
    若最后一个点未被选中则追加。结果最多 max_points + 1 个点，
    保持原有顺序，且都是原始点本身（不插值）。
    """
    if len(points) <= max_points:
        return list(points)

    step = len(points) / max_points
    result = [points[math.floor(i * step)] for i in range(max_points)]
    if result[-1] is not points[-1]:
        result.append(points[-1])
    return result


def get_aggregated_history(
    db: Database,
    range_label: str,
    max_points: Optional[int] = None,
    now: Optional[int] = None
) -> AggregatedHistoryResponse:
    """
    查询全集群聚合历史

    未知范围标签按 1h 处理，但响应中原样返回调用方的标签。
    数据库读取失败直接向上抛出。
    """
    if max_points is None:
        max_points = get_config().history.max_points
    if now is None:
        now = int(time.time())

    range_seconds = resolve_history_range(range_label)
    since = now - range_seconds if range_seconds > 0 else None

    snapshots = db.query_snapshots(since=since)
    aggregated = aggregate_snapshots(snapshots, range_seconds)
    history = downsample(aggregated, max_points)

    logger.debug(
        f"Aggregated history range={range_label}: {len(snapshots)} snapshots -> "
        f"{len(aggregated)} buckets -> {len(history)} points"
    )

    return AggregatedHistoryResponse(
        range=range_label,
        data_points=len(history),
        history=history
    )


def get_server_history(
    db: Database,
    server_id: str,
    range_label: str,
    max_points: Optional[int] = None,
    now: Optional[int] = None
) -> ServerHistoryResponse:
    """查询单台服务器的原始快照历史（只降采样，不分桶）"""
    if max_points is None:
        max_points = get_config().history.max_points
    if now is None:
        now = int(time.time())

    range_seconds = resolve_history_range(range_label)
    since = now - range_seconds if range_seconds > 0 else None

    history = downsample(db.query_snapshots(server_id=server_id, since=since), max_points)

    return ServerHistoryResponse(
        server_id=server_id,
        range=range_label,
        data_points=len(history),
        history=history
    )
