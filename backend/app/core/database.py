"""
数据库连接模块 (Database Connection Module)

创建 SMTPLog 的异步引擎、会话工厂和 ORM 基类。生产环境使用 asyncpg 连接 PostgreSQL，
导入任务每小时才访问一次数据库，因此对连接池开启 pre-ping 以丢弃被服务端断开的空闲连接。
DATABASE_URL_OVERRIDE 指向 SQLite（本地调试、测试）时不设置连接池参数。

Async engine, session factory and declarative base. PostgreSQL connections are
pre-pinged because the hourly importer leaves them idle long enough for the
server to drop them; SQLite URLs get no pool options.
"""
from typing import Any, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings


def engine_options(url: str) -> Dict[str, Any]:
    """按数据库后端返回引擎参数 (Engine keyword arguments per backend)"""
    if make_url(url).get_backend_name() == "sqlite":
        return {}
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 5, "pool_recycle": 1800}


engine = create_async_engine(settings.database_url, echo=False, **engine_options(settings.database_url))

# 提交后不过期对象，导入流程在提交后仍会读取已写入的行
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """ORM 模型基类 (Declarative base for mail_logs and email_records)"""
    pass


async def create_tables(bind: AsyncEngine = engine) -> None:
    """按模型元数据建表，已存在的表保持不变 (Create missing tables)"""
    # 注册模型到 Base.metadata
    import app.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncSession:
    """
    FastAPI 依赖项：获取数据库会话 (FastAPI Dependency: Get Database Session)

    Yields:
        AsyncSession: 请求结束后自动关闭的异步会话
    """
    async with async_session() as session:
        yield session
