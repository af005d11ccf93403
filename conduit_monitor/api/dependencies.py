"""
依赖注入模块

数据库和可用性跟踪器都通过依赖提供，测试中用 dependency_overrides 替换。
"""

import secrets
from typing import Any, Dict, Optional

from fastapi import Header, HTTPException, status

from ..availability import AvailabilityTracker, get_tracker
from ..collector import StatusBoard, get_status_board
from ..config import get_config
from ..database import Database, get_db

# 保持该值时不校验管理员 Token（仅用于本地开发）
DEFAULT_ADMIN_TOKEN = "CHANGE_ME_IN_PRODUCTION"


async def get_database() -> Database:
    """获取数据库实例"""
    return get_db()


async def get_availability_tracker() -> AvailabilityTracker:
    """获取可用性跟踪器（与采集循环共用同一状态缓存）"""
    return get_tracker()


async def get_server_status_board() -> StatusBoard:
    """获取采集循环维护的最近状态"""
    return get_status_board()


async def verify_admin_token(x_admin_token: Optional[str] = Header(None)):
    """校验 X-Admin-Token，保护添加/删除服务器"""
    expected_token = get_config().api.admin_token
    if expected_token == DEFAULT_ADMIN_TOKEN:
        return

    if x_admin_token is None or not secrets.compare_digest(x_admin_token, expected_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token"
        )


def require_server(db: Database, server_id: str) -> Dict[str, Any]:
    """查询服务器，不存在时返回 404"""
    server = db.get_server_by_id(server_id)
    if not server:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Server {server_id} not found"
        )
    return server
