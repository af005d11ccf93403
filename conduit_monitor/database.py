"""
数据库操作抽象层

封装所有 SQLite 操作，提供：
- 服务器增删查
- 历史快照追加/查询/清理
- 可用性事件追加/查询
"""

import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Dict, Any

from .config import get_config
from .models import MetricsSnapshot, UptimeEvent


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS servers (
    id TEXT PRIMARY KEY,
    host TEXT NOT NULL,
    port INTEGER NOT NULL,
    secret TEXT NOT NULL,
    label TEXT,
    agent_id TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(host, port)
);

CREATE TABLE IF NOT EXISTS metrics_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    server_id TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    data_json TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_metrics_history_server_ts ON metrics_history(server_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_metrics_history_ts ON metrics_history(timestamp);

CREATE TABLE IF NOT EXISTS uptime_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    server_id TEXT NOT NULL,
    event_type TEXT NOT NULL CHECK (event_type IN ('online', 'offline')),
    timestamp INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_uptime_events_server_ts ON uptime_events(server_id, timestamp);
"""


class Database:
    """数据库操作类"""
    
    def __init__(self, db_path: Optional[str] = None, timeout: int = 30):
        """
        初始化数据库连接并建表

        Args:
            db_path: 数据库文件路径，不指定则从配置加载（同时使用配置中的超时）
            timeout: 连接超时（秒）
        """
        if db_path is None:
            config = get_config()
            db_path = config.database.path
            timeout = config.database.timeout
        
        self.db_path = Path(db_path)
        self.timeout = timeout
        
        # 确保目录存在
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_schema()
    
    @contextmanager
    def get_conn(self):
        """
        获取数据库连接（上下文管理器）
        
        使用方式：
            with db.get_conn() as conn:
                cursor = conn.execute("SELECT ...")
        """
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
    
    def init_schema(self):
        """创建表和索引（幂等）"""
        with self.get_conn() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA_SQL)
    
    # =========================================================================
    # 服务器操作
    # =========================================================================
    
    def get_all_servers(self) -> List[Dict[str, Any]]:
        """获取所有服务器"""
        with self.get_conn() as conn:
            cursor = conn.execute("""
                SELECT id, host, port, secret, label, agent_id, created_at
                FROM servers
                ORDER BY created_at, id
            """)
            return [dict(row) for row in cursor.fetchall()]
    
    def get_server_ids(self) -> List[str]:
        """获取所有服务器 ID"""
        with self.get_conn() as conn:
            cursor = conn.execute("SELECT id FROM servers ORDER BY created_at, id")
            return [row["id"] for row in cursor.fetchall()]
    
    def get_server_by_id(self, server_id: str) -> Optional[Dict[str, Any]]:
        """根据 ID 获取服务器"""
        with self.get_conn() as conn:
            cursor = conn.execute("""
                SELECT id, host, port, secret, label, agent_id, created_at
                FROM servers
                WHERE id = ?
            """, (server_id,))
            row = cursor.fetchone()
            return dict(row) if row else None
    
    def get_server_by_address(self, host: str, port: int) -> Optional[Dict[str, Any]]:
        """根据 host:port 获取服务器"""
        with self.get_conn() as conn:
            cursor = conn.execute("""
                SELECT id, host, port, secret, label, agent_id, created_at
                FROM servers
                WHERE host = ? AND port = ?
            """, (host, port))
            row = cursor.fetchone()
            return dict(row) if row else None
    
    def create_server(
        self,
        host: str,
        port: int,
        secret: str,
        label: Optional[str] = None
    ) -> str:
        """
        创建服务器
        
        Returns:
            新创建的服务器 ID
        """
        server_id = str(uuid.uuid4())
        with self.get_conn() as conn:
            conn.execute("""
                INSERT INTO servers (id, host, port, secret, label)
                VALUES (?, ?, ?, ?, ?)
            """, (server_id, host, port, secret, label))
        return server_id
    
    def update_agent_id(self, server_id: str, agent_id: str):
        """更新 Agent 上报的节点标识"""
        with self.get_conn() as conn:
            conn.execute(
                "UPDATE servers SET agent_id = ? WHERE id = ?",
                (agent_id, server_id)
            )
    
    def delete_server(self, server_id: str) -> bool:
        """
        删除服务器（同时删除其历史快照和可用性事件）
        
        Returns:
            是否删除成功
        """
        with self.get_conn() as conn:
            conn.execute("DELETE FROM metrics_history WHERE server_id = ?", (server_id,))
            conn.execute("DELETE FROM uptime_events WHERE server_id = ?", (server_id,))
            cursor = conn.execute("DELETE FROM servers WHERE id = ?", (server_id,))
            return cursor.rowcount > 0
    
    # =========================================================================
    # 历史快照操作
    # =========================================================================
    
    def save_snapshot(self, snapshot: MetricsSnapshot):
        """追加一条归一化快照"""
        with self.get_conn() as conn:
            conn.execute("""
                INSERT INTO metrics_history (server_id, timestamp, data_json)
                VALUES (?, ?, ?)
            """, (snapshot.server_id, snapshot.timestamp, snapshot.model_dump_json()))
    
    def query_snapshots(
        self,
        server_id: Optional[str] = None,
        since: Optional[int] = None
    ) -> List[MetricsSnapshot]:
        """
        查询历史快照
        
        Args:
            server_id: 服务器 ID，为空则查询所有服务器
            since: 起始时间（含），为空则不限
        
        Returns:
            按时间升序排列的快照列表
        """
        conditions = []
        params = []
        
        if server_id is not None:
            conditions.append("server_id = ?")
            params.append(server_id)
        if since is not None:
            conditions.append("timestamp >= ?")
            params.append(since)
        
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        
        with self.get_conn() as conn:
            cursor = conn.execute(f"""
                SELECT server_id, timestamp, data_json
                FROM metrics_history
                {where}
                ORDER BY timestamp ASC, id ASC
            """, params)
            rows = cursor.fetchall()
        
        snapshots = []
        for row in rows:
            snapshot = MetricsSnapshot.model_validate_json(row["data_json"])
            # 以行字段为准（data_json 中的同名字段只是冗余）
            snapshots.append(snapshot.model_copy(update={
                "server_id": row["server_id"],
                "timestamp": row["timestamp"],
            }))
        return snapshots
    
    def delete_snapshots_before(self, cutoff: int) -> int:
        """
        删除早于 cutoff 的快照
        
        Returns:
            删除的行数
        """
        with self.get_conn() as conn:
            cursor = conn.execute(
                "DELETE FROM metrics_history WHERE timestamp < ?", (cutoff,)
            )
            return cursor.rowcount
    
    # =========================================================================
    # 可用性事件操作
    # =========================================================================
    
    def append_uptime_event(self, event: UptimeEvent) -> int:
        """
        追加可用性事件
        
        Returns:
            事件 ID
        """
        with self.get_conn() as conn:
            cursor = conn.execute("""
                INSERT INTO uptime_events (server_id, event_type, timestamp)
                VALUES (?, ?, ?)
            """, (event.server_id, event.event_type, event.timestamp))
            return cursor.lastrowid
    
    def append_uptime_event_if_changed(self, event: UptimeEvent) -> bool:
        """
        仅当服务器最近一条事件类型与 event 不同时追加

        比较和写入在同一条 INSERT ... SELECT 中完成，SQLite 串行化写事务，
        多个进程共用同一数据库时也不会写入重复事件。

        Returns:
            是否写入了事件
        """
        with self.get_conn() as conn:
            cursor = conn.execute("""
                INSERT INTO uptime_events (server_id, event_type, timestamp)
                SELECT ?, ?, ?
                WHERE COALESCE((
                    SELECT event_type FROM uptime_events
                    WHERE server_id = ?
                    ORDER BY timestamp DESC, id DESC
                    LIMIT 1
                ), '') != ?
            """, (event.server_id, event.event_type, event.timestamp,
                  event.server_id, event.event_type))
            return cursor.rowcount > 0

    def query_uptime_events(self, server_id: str, since: int) -> List[UptimeEvent]:
        """查询 since（含）之后的事件，按时间升序（同一秒按写入顺序）"""
        with self.get_conn() as conn:
            cursor = conn.execute("""
                SELECT server_id, event_type, timestamp
                FROM uptime_events
                WHERE server_id = ? AND timestamp >= ?
                ORDER BY timestamp ASC, id ASC
            """, (server_id, since))
            return [UptimeEvent(**dict(row)) for row in cursor.fetchall()]
    
    def get_last_event_before(self, server_id: str, ts: int) -> Optional[UptimeEvent]:
        """查询 ts 之前的最后一条事件"""
        with self.get_conn() as conn:
            cursor = conn.execute("""
                SELECT server_id, event_type, timestamp
                FROM uptime_events
                WHERE server_id = ? AND timestamp < ?
                ORDER BY timestamp DESC, id DESC
                LIMIT 1
            """, (server_id, ts))
            row = cursor.fetchone()
            return UptimeEvent(**dict(row)) if row else None
    
    def get_latest_event(self, server_id: str) -> Optional[UptimeEvent]:
        """查询服务器最近一条事件"""
        with self.get_conn() as conn:
            cursor = conn.execute("""
                SELECT server_id, event_type, timestamp
                FROM uptime_events
                WHERE server_id = ?
                ORDER BY timestamp DESC, id DESC
                LIMIT 1
            """, (server_id,))
            row = cursor.fetchone()
            return UptimeEvent(**dict(row)) if row else None


# 全局数据库实例（延迟加载）
_db: Optional[Database] = None


def get_db() -> Database:
    """获取全局数据库实例"""
    global _db
    if _db is None:
        _db = Database()
    return _db


def reset_db():
    """重置数据库实例（主要用于测试）"""
    global _db
    _db = None
