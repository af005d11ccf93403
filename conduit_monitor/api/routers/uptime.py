"""
可用性 API

- GET /api/uptime: 集群可用率
- GET /api/servers/{server_id}/uptime: 单台服务器可用率及宕机记录
"""

from fastapi import APIRouter, Depends, Query

from ...availability import AvailabilityTracker
from ...models import FleetUptimeResponse, ServerUptimeResponse
from ...ranges import DEFAULT_UPTIME_RANGE
from ..dependencies import get_availability_tracker, require_server

router = APIRouter(prefix="/api", tags=["uptime"])


@router.get("/uptime", response_model=FleetUptimeResponse)
async def fleet_uptime(
    range_label: str = Query(DEFAULT_UPTIME_RANGE, alias="range", description="时间范围：24h, 7d, 30d"),
    tracker: AvailabilityTracker = Depends(get_availability_tracker)
):
    """集群可用率：所有服务器可用率的平均值，没有服务器时为 100"""
    return tracker.get_fleet_uptime(range_label)


@router.get("/servers/{server_id}/uptime", response_model=ServerUptimeResponse)
async def server_uptime(
    server_id: str,
    range_label: str = Query(DEFAULT_UPTIME_RANGE, alias="range", description="时间范围：24h, 7d, 30d"),
    tracker: AvailabilityTracker = Depends(get_availability_tracker)
):
    """单台服务器可用率及宕机记录"""
    require_server(tracker.db, server_id)
    return tracker.get_server_uptime(server_id, range_label)
