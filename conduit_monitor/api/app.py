"""
FastAPI 应用

注册历史、可用性和服务器管理路由。数据库读取失败统一返回 500，
避免调用方把读取失败误认为"没有数据"。
"""

import logging
import sqlite3

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_config
from .routers import history, servers, uptime

logger = logging.getLogger(__name__)


async def store_error_handler(request: Request, exc: sqlite3.Error) -> JSONResponse:
    logger.error(f"Store error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Storage read failed"}
    )


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    config = get_config()

    app = FastAPI(
        title="Conduit Monitor",
        description="Conduit 节点集群监控：历史指标聚合与可用性统计",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    app.add_exception_handler(sqlite3.Error, store_error_handler)

    app.include_router(servers.router)
    app.include_router(history.router)
    app.include_router(uptime.router)

    return app


# 默认应用实例（uvicorn conduit_monitor.api.app:app）
app = create_app()
