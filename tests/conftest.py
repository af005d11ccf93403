"""
测试公共 fixture
"""

import sys
from pathlib import Path

import pytest

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conduit_monitor.availability import AvailabilityTracker, reset_tracker
from conduit_monitor.collector import reset_status_board
from conduit_monitor.config import reset_config
from conduit_monitor.database import Database, reset_db


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return float(self.now)

    def advance(self, seconds: int):
        self.now += seconds


@pytest.fixture(autouse=True)
def isolated_globals(tmp_path, monkeypatch):
    """每个测试使用独立的配置和数据库，不读取工作目录下的 config.yaml"""
    monkeypatch.setenv("CONDUIT_MONITOR_CONFIG_PATH", str(tmp_path / "missing-config.yaml"))
    monkeypatch.setenv("CONDUIT_MONITOR_DATABASE__PATH", str(tmp_path / "global.db"))
    reset_config()
    reset_db()
    reset_tracker()
    reset_status_board()
    yield
    reset_config()
    reset_db()
    reset_tracker()
    reset_status_board()


@pytest.fixture
def db(tmp_path):
    """创建临时测试数据库"""
    return Database(str(tmp_path / "test_monitor.db"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(db, clock):
    return AvailabilityTracker(db, clock=clock)
