"""
数据模型定义

包括：
- 归一化后的快照与聚合数据点
- 可用性事件与宕机记录
- 最近一次拉取状态
- Pydantic 请求/响应模型（用于 API）
"""

from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from .uri import parse_conduit_uri


EventType = Literal["online", "offline"]


# =============================================================================
# 指标快照与聚合数据点
# =============================================================================

class CountryConnections(BaseModel):
    """按国家统计的连接数"""
    country: str
    connections: int = 0


class MetricsFields(BaseModel):
    """快照与聚合数据点共有的指标字段"""
    system_cpu: float = 0.0  # CPU 使用率（%）
    system_memory_used: float = 0.0  # MB
    system_memory_total: float = 0.0  # MB
    system_net_in: float = 0.0  # Mbps
    system_net_out: float = 0.0  # Mbps
    total_connections: float = 0.0
    unique_ips: float = 0.0
    container_count: float = 0.0
    total_container_cpu: float = 0.0  # 所有容器 CPU 之和
    total_container_memory: float = 0.0  # 所有容器内存之和（MB）
    clients_by_country: List[CountryConnections] = Field(default_factory=list)


class MetricsSnapshot(MetricsFields):
    """单次拉取得到的原始快照（归一化后，写入后不可变）"""
    server_id: str
    timestamp: int  # Unix 秒


class MetricsDataPoint(MetricsFields):
    """聚合后的数据点（按请求实时计算，不入库）"""
    bucket_timestamp: int


# =============================================================================
# 可用性
# =============================================================================

class UptimeEvent(BaseModel):
    """在线/离线状态变化事件（仅在状态变化时追加）"""
    server_id: str
    event_type: EventType
    timestamp: int


class DowntimeIncident(BaseModel):
    """宕机记录，end 为 None 表示查询时仍未恢复"""
    start: int
    end: Optional[int] = None
    duration: int


class UptimeResult(BaseModel):
    """单台服务器在时间窗口内的可用性"""
    uptime_percent: float
    downtime_incidents: List[DowntimeIncident] = Field(default_factory=list)


# =============================================================================
# API 响应模型
# =============================================================================

class AggregatedHistoryResponse(BaseModel):
    """全集群聚合历史（GET /api/history）"""
    range: str
    data_points: int
    history: List[MetricsDataPoint] = Field(default_factory=list)


class ServerHistoryResponse(BaseModel):
    """单台服务器历史（GET /api/servers/{id}/history）"""
    server_id: str
    range: str
    data_points: int
    history: List[MetricsSnapshot] = Field(default_factory=list)


class ServerUptimeResponse(BaseModel):
    """单台服务器可用性（GET /api/servers/{id}/uptime）"""
    server_id: str
    range: str
    uptime_percent: float
    downtime_incidents: List[DowntimeIncident] = Field(default_factory=list)


class ServerUptimeSummary(BaseModel):
    """集群可用性中的单台服务器条目"""
    server_id: str
    uptime_percent: float


class FleetUptimeResponse(BaseModel):
    """集群可用性（GET /api/uptime）"""
    range: str
    fleet_uptime_percent: float
    server_uptimes: List[ServerUptimeSummary] = Field(default_factory=list)


# =============================================================================
# 服务器管理
# =============================================================================

class ServerResponse(BaseModel):
    """服务器响应模型（不包含 host/port/secret）"""
    id: str
    label: Optional[str] = None
    agent_id: Optional[str] = None
    created_at: str
    online: Optional[bool] = None  # None 表示尚无状态记录


class ServerCreate(BaseModel):
    """
    创建服务器请求模型

    两种写法任选其一：
    - uri: conduit://secret@host:port
    - host + port + secret 分开填写
    """
    uri: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    secret: Optional[str] = None
    label: Optional[str] = None

    def resolve_address(self) -> Tuple[str, int, str]:
        """
        返回 (host, port, secret)

        Raises:
            ValueError: URI 格式错误，或分开填写时缺少字段
        """
        if self.uri is not None:
            return parse_conduit_uri(self.uri)
        if not self.host or self.port is None or not self.secret:
            raise ValueError("Either uri or host, port and secret are required")
        return self.host, self.port, self.secret


# =============================================================================
# 最近一次拉取状态
# =============================================================================

class ServerStatus(BaseModel):
    """
    服务器最近一次拉取结果（GET /api/servers/{id}/status）

    online 为 None 表示自启动以来尚未拉取过。
    error 取值：auth_failed, starting_up, agent_error, timeout, invalid_response, offline
    """
    server_id: str
    online: Optional[bool] = None
    error: Optional[str] = None
    agent_status: Optional[int] = None  # Agent 返回的 HTTP 状态码（仅 agent_error）
    stale: bool = False
    checked_at: Optional[int] = None
    report: Optional[Dict[str, Any]] = None  # Agent 原始报告
