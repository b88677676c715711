"""
SMTPLog 后端应用入口模块 (SMTPLog Backend Application Entry Module)

负责 FastAPI 应用的完整生命周期管理：数据库表初始化、定时日志导入任务启动、
中间件配置和路由注册。

Main application entry point, responsible for FastAPI application lifecycle management:
database table initialization, scheduled log import startup, middleware configuration,
and route registration.

主要功能 (Main Features):
- 数据库表自动创建 (Automatic database table creation)
- 定时导入 Postfix 日志 (Scheduled Postfix log import)
- 日志与投递记录查询、统计 (Log and delivery record queries and statistics)
- WebSocket 实时导入进度推送 (Real-time import progress via WebSocket)
- 健康检查 (Health checks)
"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.core.database import create_tables, engine
from app.routers import logs
from app.routers import emails
from app.routers import stats
from app.routers import log_import

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理器 (Application Lifecycle Manager)

    启动时创建数据库表并启动定时导入任务，关闭时取消任务并释放连接池。

    Creates database tables and starts the scheduled import task at startup;
    cancels the task and disposes the connection pool at shutdown.
    """
    from app.tasks.log_import_scheduler import log_import_loop

    # 自动创建数据库表结构 (Automatically create database table structure)
    await create_tables()

    # 定时日志导入任务 (Scheduled log import task)
    import_task = None
    if settings.import_enabled:
        import_task = asyncio.create_task(log_import_loop())
    else:
        logger.info("Scheduled log import disabled (IMPORT_ENABLED=false)")

    yield

    # 关闭阶段：取消后台任务并关闭连接池 (Shutdown: cancel background task and close pool)
    if import_task is not None:
        import_task.cancel()
        # 等待正在进行的导入退出后再释放连接池
        with suppress(asyncio.CancelledError):
            await import_task
    await engine.dispose()


# 创建 FastAPI 应用实例 (Create FastAPI application instance)
app = FastAPI(
    title="SMTPLog",
    description="Postfix mail log ingestion and delivery tracking | Postfix 邮件日志导入与投递追踪",
    version="0.1.0",
    lifespan=lifespan,
)

# 注册全局异常处理器 (Register global exception handlers)
register_exception_handlers(app)

# 配置 CORS 中间件，允许前端跨域访问 (Configure CORS middleware for frontend cross-origin access)
is_production = settings.environment.lower() == "production"
allowed_origins = ["*"] if not is_production else [settings.frontend_url]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=is_production,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# 注册所有 API 路由模块 (Register all API router modules)
app.include_router(logs.router)  # 原始日志 (Raw logs)
app.include_router(emails.router)  # 投递记录 (Delivery records)
app.include_router(stats.router)  # 统计 (Statistics)
app.include_router(log_import.router)  # 日志导入 (Log import)
app.include_router(log_import.ws_router)  # WebSocket 导入进度流 (WebSocket import progress)


@app.get("/health")
@app.get("/api/v1/health")
async def health():
    """
    健康检查接口 (Health Check Endpoint)

    验证 API 和数据库的连通性，用于负载均衡器和容器编排的健康检查。

    Verifies API and database connectivity, used by load balancer and orchestrator health checks.

    Returns:
        dict: 包含各组件状态和时间戳的健康检查结果 (Health check results with component status and timestamp)
    """
    checks = {"api": "ok"}

    # 数据库连通性检查 (Database connectivity check)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception:
        logger.warning("Health check: database unreachable", exc_info=True)
        checks["database"] = "error"

    status = "ok" if all(v == "ok" for v in checks.values()) else "degraded"

    return {
        "status": status,
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
