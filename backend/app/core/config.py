"""
应用配置模块 (Application Configuration Module)

使用 Pydantic Settings 管理 SMTPLog 的所有配置项，支持从 .env 文件和环境变量读取。
提供数据库连接、日志导入（日志文件路径、检查点文件、调度间隔）等配置管理。

Uses Pydantic Settings to manage all configuration items for SMTPLog,
supporting reading from .env files and environment variables. Provides configuration
for database connections and the log importer (log file path, checkpoint file, schedule interval).
"""
import logging

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    应用全局配置类 (Application Global Configuration Class)

    字段名自动映射同名环境变量（不区分大小写），支持 .env 文件加载。

    Field names automatically map to same-named environment variables (case insensitive),
    supporting .env file loading.
    """

    # 数据库配置 (Database Configuration)
    postgres_host: str = "localhost"  # PostgreSQL 主机地址 (PostgreSQL Host)
    postgres_port: int = 5432  # PostgreSQL 端口号 (PostgreSQL Port)
    postgres_db: str = "smtplog"  # 数据库名称 (Database Name)
    postgres_user: str = "smtplog_user"  # 数据库用户名 (Database Username)
    postgres_password: str = "smtplog_password"  # 数据库密码 (Database Password)
    database_url_override: str = ""  # 完整连接 URL，设置后优先使用 (Full URL, takes precedence when set)

    # 日志导入配置 (Log Import Configuration)
    log_file: str = "/app/logs/mail.log"  # Postfix 日志文件路径 (Postfix log file path)
    state_file: str = "/app/data/log_state.json"  # 导入检查点文件 (Import checkpoint file)
    import_enabled: bool = True  # 是否启用定时导入 (Enable scheduled import)
    import_interval_seconds: int = 3600  # 定时导入间隔（秒） (Scheduled import interval in seconds)
    import_on_startup: bool = True  # 启动后立即导入一次 (Run one import right after startup)
    import_timeout_seconds: float | None = None  # 单次导入超时（秒），为空不限制 (Per-run deadline)
    truncate_after_import: bool = True  # 导入成功后截断日志文件 (Truncate log file after a successful import)

    # 运行环境配置 (Runtime Configuration)
    environment: str = "development"  # 运行环境：development/production (Runtime Environment)
    frontend_url: str = "http://localhost:3001"  # 前端 URL (Frontend URL)

    @property
    def database_url(self) -> str:
        """
        构造 PostgreSQL 异步连接 URL (Build PostgreSQL Async Connection URL)

        根据配置的数据库连接参数，生成适用于 asyncpg 驱动的连接字符串。
        设置了 database_url_override 时直接返回该值（如本地调试用 sqlite+aiosqlite）。

        Generates a connection string suitable for the asyncpg driver. When
        database_url_override is set it is returned as-is (e.g. sqlite+aiosqlite for local runs).
        """
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}  # Pydantic 配置：自动加载 .env 文件 (Pydantic Config: Auto-load .env file)


# 全局配置实例 (Global Configuration Instance)
settings = Settings()

if settings.import_interval_seconds <= 0:
    logger.warning(
        "IMPORT_INTERVAL_SECONDS 必须为正数，已回退到 3600 秒。"
        " | IMPORT_INTERVAL_SECONDS must be positive, falling back to 3600 seconds."
    )
    settings.import_interval_seconds = 3600
