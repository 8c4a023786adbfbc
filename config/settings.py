"""全局配置管理

所有可调参数均通过 .env 文件或环境变量设置，运行时自动加载到此处。

使用方式：
    1. 运行 python scripts/setup_env.py 生成 .env 文件
    2. 或直接设置环境变量（如 AUTOPILOT_ENABLED=false）
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用配置 - 所有字段均可通过 .env 或环境变量覆盖"""

    # ========== 数据库 ==========
    database_url: str = "sqlite:///data/studio.db"

    # ========== Autopilot ==========
    autopilot_enabled: bool = True  # false 时不自动启动周期巡检
    autopilot_interval_minutes: int = 60
    tenant_page_size: int = 100

    # ========== 事件总线 ==========
    event_bus_interval_seconds: float = 1.0
    event_bus_max_retries: int = 3

    # ========== 催款阈值（逾期天数） ==========
    reminder_level1_days: int = 3
    reminder_level2_days: int = 10
    reminder_level3_days: int = 20

    # ========== 日志 ==========
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# 全局配置实例
settings = Settings()
