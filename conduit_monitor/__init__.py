"""
Conduit Monitor - 服务器集群监控中心服务

负责：
- 定时拉取所有 Agent 的状态快照
- 归一化快照并写入历史指标表
- 按时间桶聚合全集群历史指标（供图表展示）
- 基于状态变化事件重建每台服务器的可用率与宕机记录
- 定期清理过期快照
- 提供 REST API 给前端
"""

__version__ = "1.0.0"
