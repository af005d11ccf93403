"""
主程序入口

并发运行：
1. Agent 采集循环（collector.interval 秒一轮）
2. 快照清理任务（retention.cleanup_interval_minutes 分钟一轮）
3. REST API 服务

任一任务异常退出时取消其余任务并结束进程。
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn

from . import __version__
from .availability import get_tracker
from .collector import initialize_all_states, run_collector
from .config import AppConfig, get_config
from .database import get_db
from .retention import run_cleanup

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOCK_FILE_NAME = "conduit-monitor.lock"

# 采集循环每轮都会请求所有 Agent，httpx 的 INFO 日志过于频繁
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(config: AppConfig):
    """按配置初始化根日志：标准输出，可选写入文件"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_path), encoding="utf-8"))

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def acquire_single_instance_lock(lock_path: Path):
    """
    对数据库目录下的锁文件加排他锁

    在线状态缓存保存在进程内存中，两个进程共用同一数据库时
    会各自写入状态变化事件，导致事件重复。

    Returns:
        锁文件句柄（进程退出前保持打开）

    Raises:
        RuntimeError: 已有其他实例持锁
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = open(lock_path, "a+b")

    try:
        if os.name == "nt":
            import msvcrt

            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl

            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        handle.close()
        raise RuntimeError(f"Database {lock_path.parent} is in use by another Conduit Monitor process") from e

    # 记录持锁进程，便于排查
    handle.seek(0)
    handle.truncate()
    handle.write(str(os.getpid()).encode("utf-8"))
    handle.flush()
    return handle


async def run_api_server(config: AppConfig):
    """在当前事件循环中运行 uvicorn"""
    from .api.app import create_app

    server = uvicorn.Server(uvicorn.Config(
        app=create_app(),
        host=config.api.host,
        port=config.api.port,
        log_level=config.logging.level.lower(),
        access_log=False
    ))
    await server.serve()


async def run_services(config: AppConfig):
    """运行所有后台任务，第一个失败的任务会导致其余任务被取消"""
    logger = logging.getLogger(__name__)

    tasks = [
        asyncio.create_task(run_collector(), name="collector"),
        asyncio.create_task(run_cleanup(), name="cleanup"),
        asyncio.create_task(run_api_server(config), name="api"),
    ]

    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if task.cancelled():
                continue
            if task.exception() is not None:
                logger.error(f"Task {task.get_name()} crashed: {task.exception()}")
            else:
                logger.info(f"Task {task.get_name()} exited")
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def main():
    """主函数：初始化后启动所有任务"""
    config = get_config()
    setup_logging(config)
    logger = logging.getLogger(__name__)

    logger.info(f"Conduit Monitor v{__version__}")
    logger.info(f"API: {config.api.host}:{config.api.port}")
    logger.info(
        f"Collector: every {config.collector.interval}s, "
        f"snapshots kept {config.retention.hours}h, "
        f"history capped at {config.history.max_points} points"
    )

    try:
        lock_handle = acquire_single_instance_lock(Path(config.database.path).parent / LOCK_FILE_NAME)
    except RuntimeError as e:
        logger.error(str(e))
        return

    try:
        db = get_db()
        logger.info(f"Database ready: {db.db_path}")

        # 从事件表恢复各服务器的最近状态，避免重启后重复写入相同事件
        initialize_all_states(get_tracker())

        await run_services(config)
    except asyncio.CancelledError:
        logger.info("Shutting down...")
    finally:
        lock_handle.close()


def cli(argv: Optional[List[str]] = None):
    """命令行入口：conduit-monitor [--config PATH]"""
    parser = argparse.ArgumentParser(prog="conduit-monitor", description="Conduit fleet monitor")
    parser.add_argument("--config", help="配置文件路径（默认 config.yaml 或 CONDUIT_MONITOR_CONFIG_PATH）")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    if args.config:
        os.environ["CONDUIT_MONITOR_CONFIG_PATH"] = args.config

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown requested, exiting...")
        sys.exit(0)


if __name__ == "__main__":
    cli()
