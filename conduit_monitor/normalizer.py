"""
快照归一化

将 Agent 返回的原始状态报告转换为固定结构的 MetricsSnapshot。
缺失或无法解析的字段一律按 0 处理，不抛出异常，
避免上游的残缺数据导致写入流程失败。
"""

import math
import time
from typing import Any, Dict, List, Optional

from .models import CountryConnections, MetricsSnapshot


def _num(value: Any) -> float:
    """转换为数值，None/非数值/NaN 返回 0"""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(result) or math.isinf(result):
        return 0.0
    return result


def _section(report: Dict[str, Any], key: str) -> Dict[str, Any]:
    """取子对象，不是字典时返回空字典"""
    value = report.get(key)
    return value if isinstance(value, dict) else {}


def _list(report: Dict[str, Any], key: str) -> List[Any]:
    value = report.get(key)
    return value if isinstance(value, list) else []


def _countries(report: Dict[str, Any]) -> List[CountryConnections]:
    """解析国家连接数列表（跳过格式错误的条目）"""
    result = []
    for item in _list(report, "clients_by_country"):
        if not isinstance(item, dict):
            continue
        country = item.get("country")
        if not isinstance(country, str) or not country:
            continue
        result.append(CountryConnections(
            country=country,
            connections=int(_num(item.get("connections")))
        ))
    return result


def normalize(
    server_id: str,
    report: Any,
    now: Optional[int] = None
) -> MetricsSnapshot:
    """
    归一化单次拉取的 Agent 报告
    
    Args:
        server_id: 服务器 ID（中心侧 ID，而非 Agent 上报的 server_id）
        report: Agent /status 返回的 JSON
        now: 报告缺少时间戳时使用的时间（默认当前时间）
    
    Returns:
        MetricsSnapshot
    """
    if now is None:
        now = int(time.time())
    if not isinstance(report, dict):
        report = {}
    
    system = _section(report, "system")
    connections = _section(report, "connections")
    containers = [c for c in _list(report, "containers") if isinstance(c, dict)]
    
    timestamp = int(_num(report.get("timestamp"))) or now
    
    return MetricsSnapshot(
        server_id=server_id,
        timestamp=timestamp,
        system_cpu=_num(system.get("cpu_percent")),
        system_memory_used=_num(system.get("memory_used_mb")),
        system_memory_total=_num(system.get("memory_total_mb")),
        system_net_in=_num(system.get("net_in_mbps")),
        system_net_out=_num(system.get("net_out_mbps")),
        total_connections=_num(connections.get("total")),
        unique_ips=_num(connections.get("unique_ips")),
        container_count=_num(report.get("total_containers")),
        total_container_cpu=sum(_num(c.get("cpu_percent")) for c in containers),
        total_container_memory=sum(_num(c.get("memory_mb")) for c in containers),
        clients_by_country=_countries(report),
    )
