"""
服务器管理 API

提供服务器的列表、添加、删除，以及最近一次拉取状态。响应中不包含地址和密钥。
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ...availability import AvailabilityTracker
from ...collector import StatusBoard
from ...database import Database
from ...models import ServerCreate, ServerResponse, ServerStatus
from ..dependencies import (
    get_availability_tracker,
    get_database,
    get_server_status_board,
    require_server,
    verify_admin_token,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/servers", tags=["servers"])


def _to_response(server: dict, tracker: AvailabilityTracker) -> ServerResponse:
    state = tracker.states.get(server["id"])
    return ServerResponse(
        id=server["id"],
        label=server.get("label"),
        agent_id=server.get("agent_id"),
        created_at=server["created_at"],
        online=None if state is None else state == "online"
    )


@router.get("", response_model=List[ServerResponse])
async def list_servers(
    db: Database = Depends(get_database),
    tracker: AvailabilityTracker = Depends(get_availability_tracker)
):
    """获取所有服务器及当前在线状态"""
    return [_to_response(server, tracker) for server in db.get_all_servers()]


@router.post(
    "",
    response_model=ServerResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_admin_token)]
)
async def create_server(
    data: ServerCreate,
    db: Database = Depends(get_database),
    tracker: AvailabilityTracker = Depends(get_availability_tracker)
):
    """
    添加服务器

    接受 conduit://secret@host:port 连接串，或分开填写 host/port/secret。
    同一 host:port 只能注册一次，下一轮采集即纳入。
    """
    try:
        host, port, secret = data.resolve_address()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if db.get_server_by_address(host, port):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Server {host}:{port} already exists"
        )

    server_id = db.create_server(host=host, port=port, secret=secret, label=data.label)
    logger.info(f"Created server: {data.label or server_id} (id={server_id})")

    return _to_response(db.get_server_by_id(server_id), tracker)


@router.get("/{server_id}/status", response_model=ServerStatus)
async def get_server_status(
    server_id: str,
    db: Database = Depends(get_database),
    board: StatusBoard = Depends(get_server_status_board)
):
    """
    最近一次拉取结果

    包含 Agent 原始报告和 stale 标记；失败时 error 给出原因
    （auth_failed / starting_up / agent_error / timeout / invalid_response / offline）。
    """
    require_server(db, server_id)
    return board.get(server_id)


@router.delete("/{server_id}", dependencies=[Depends(verify_admin_token)])
async def delete_server(
    server_id: str,
    db: Database = Depends(get_database),
    tracker: AvailabilityTracker = Depends(get_availability_tracker),
    board: StatusBoard = Depends(get_server_status_board)
):
    """删除服务器及其快照和可用性事件"""
    require_server(db, server_id)

    # 先删库：进行中的拉取完成后会发现服务器已不存在并丢弃结果
    success = db.delete_server(server_id)
    tracker.forget(server_id)
    board.remove(server_id)

    if success:
        logger.info(f"Deleted server {server_id}")

    return {"success": success}
