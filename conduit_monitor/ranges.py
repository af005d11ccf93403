"""
时间范围标签解析

历史查询和可用性查询各有一套标签表；未知标签按默认范围处理，
但响应中仍原样回显调用方传入的标签。
"""

HISTORY_RANGES = {
    "1h": 3600,
    "6h": 21600,
    "24h": 86400,
    "30d": 2592000,
    "all": 0,  # 0 表示全部历史
}
DEFAULT_HISTORY_RANGE = "1h"

UPTIME_RANGES = {
    "24h": 86400,
    "7d": 604800,
    "30d": 2592000,
}
DEFAULT_UPTIME_RANGE = "24h"


def resolve_history_range(label: str) -> int:
    """历史范围标签 -> 秒数（未知标签回退到 1h）"""
    return HISTORY_RANGES.get(label, HISTORY_RANGES[DEFAULT_HISTORY_RANGE])


def resolve_uptime_range(label: str) -> int:
    """可用性范围标签 -> 秒数（未知标签回退到 24h）"""
    return UPTIME_RANGES.get(label, UPTIME_RANGES[DEFAULT_UPTIME_RANGE])
