"""
配置加载模块

从 config.yaml 加载配置，支持 Pydantic 验证和环境变量覆盖。

环境变量使用 CONDUIT_MONITOR_ 前缀，嵌套字段用双下划线分隔，
例如 CONDUIT_MONITOR_RETENTION__HOURS=48。
"""

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseModel):
    """数据库配置"""
    path: str = "data/conduit_monitor.db"
    timeout: int = 30


class APIConfig(BaseModel):
    """API 服务配置"""
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    admin_token: str = "CHANGE_ME_IN_PRODUCTION"


class CollectorConfig(BaseModel):
    """采集配置"""
    interval: int = Field(default=15, ge=1)
    timeout: float = 5.0
    stale_threshold: int = 60


class HistoryConfig(BaseModel):
    """历史查询配置"""
    max_points: int = Field(default=300, ge=1)


class RetentionConfig(BaseModel):
    """数据保留策略"""
    hours: int = Field(default=720, ge=1)
    cleanup_interval_minutes: int = Field(default=60, ge=1)


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None


class AppConfig(BaseSettings):
    """应用配置（完整配置）"""

    model_config = SettingsConfigDict(
        env_prefix="CONDUIT_MONITOR_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # 环境变量优先于 YAML 文件（YAML 内容通过 init 参数传入）
        return env_settings, init_settings


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    加载配置文件
    
    优先级：
    1. 参数指定的路径
    2. 环境变量 CONDUIT_MONITOR_CONFIG_PATH
    3. 默认路径 config.yaml
    
    文件中的相对路径（数据库、日志文件）按配置文件所在目录解析。
    """
    if config_path is None:
        config_path = os.environ.get("CONDUIT_MONITOR_CONFIG_PATH", "config.yaml")
    
    config_file = Path(config_path)
    raw_config = {}
    
    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f) or {}

        if not isinstance(raw_config, dict):
            raise ValueError(f"Config file {config_file} must contain a mapping at the top level")

        # 只写了节名、子项全部注释掉时，YAML 解析结果为 None
        raw_config = {key: ({} if value is None else value) for key, value in raw_config.items()}

        base_dir = config_file.resolve().parent
        
        def _resolve_path(value: Optional[str]) -> Optional[str]:
            if not value:
                return value
            path = Path(value)
            if path.is_absolute():
                return str(path)
            return str((base_dir / path).resolve())
        
        for section, key in (("database", "path"), ("logging", "file")):
            values = raw_config.get(section)
            if isinstance(values, dict) and key in values:
                values[key] = _resolve_path(values[key])
    
    return AppConfig(**raw_config)


# 全局配置实例（延迟加载）
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """获取全局配置实例（单例模式）"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config():
    """重置配置（主要用于测试）"""
    global _config
    _config = None
