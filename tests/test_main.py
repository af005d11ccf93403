"""
单元测试：入口辅助函数
"""

import asyncio
import logging

import pytest

from conduit_monitor import main as entry
from conduit_monitor.config import get_config, reset_config
from conduit_monitor.main import acquire_single_instance_lock, run_services, setup_logging


def test_single_instance_lock(tmp_path):
    """测试：同一锁文件只能被持有一次，释放后可重新获取"""
    lock_path = tmp_path / "run" / "conduit-monitor.lock"

    handle = acquire_single_instance_lock(lock_path)
    try:
        with pytest.raises(RuntimeError):
            acquire_single_instance_lock(lock_path)
    finally:
        handle.close()

    acquire_single_instance_lock(lock_path).close()


def test_setup_logging_file_handler(tmp_path, monkeypatch):
    log_file = tmp_path / "logs" / "monitor.log"
    monkeypatch.setenv("CONDUIT_MONITOR_LOGGING__FILE", str(log_file))
    reset_config()

    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        setup_logging(get_config())
        assert log_file.exists()
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level)


def test_run_services_stops_when_a_task_crashes(monkeypatch):
    """测试：任一任务异常退出时，其余任务被取消"""
    cancelled = []

    async def crashing():
        raise RuntimeError("collector died")

    async def forever(name):
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            cancelled.append(name)
            raise

    monkeypatch.setattr(entry, "run_collector", crashing)
    monkeypatch.setattr(entry, "run_cleanup", lambda: forever("cleanup"))
    monkeypatch.setattr(entry, "run_api_server", lambda config: forever("api"))

    asyncio.run(asyncio.wait_for(run_services(get_config()), timeout=5))

    assert sorted(cancelled) == ["api", "cleanup"]
