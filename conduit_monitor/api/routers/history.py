"""
历史指标 API

- GET /api/history: 全集群聚合历史
- GET /api/servers/{server_id}/history: 单台服务器原始快照历史
"""

from fastapi import APIRouter, Depends, Query

from ...aggregator import get_aggregated_history, get_server_history
from ...database import Database
from ...models import AggregatedHistoryResponse, ServerHistoryResponse
from ...ranges import DEFAULT_HISTORY_RANGE
from ..dependencies import get_database, require_server

router = APIRouter(prefix="/api", tags=["history"])


@router.get("/history", response_model=AggregatedHistoryResponse)
async def fleet_history(
    range_label: str = Query(DEFAULT_HISTORY_RANGE, alias="range", description="时间范围：1h, 6h, 24h, 30d, all"),
    db: Database = Depends(get_database)
):
    """
    查询全集群聚合历史

    未知的范围标签按 1h 处理，响应中原样返回请求的标签。
    """
    return get_aggregated_history(db, range_label)


@router.get("/servers/{server_id}/history", response_model=ServerHistoryResponse)
async def server_history(
    server_id: str,
    range_label: str = Query(DEFAULT_HISTORY_RANGE, alias="range", description="时间范围：1h, 6h, 24h, 30d, all"),
    db: Database = Depends(get_database)
):
    """查询单台服务器的历史快照"""
    require_server(db, server_id)
    return get_server_history(db, server_id, range_label)
