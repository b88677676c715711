"""
SMTPLog 测试基础配置

提供 SQLite in-memory 异步数据库、临时日志/检查点文件、导入器和 FastAPI 测试客户端等通用 fixture。
所有测试使用隔离的 SQLite 数据库，不依赖外部 PostgreSQL。
"""
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event, BigInteger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# 必须在导入 app 之前设置环境变量，避免真实连接
import os
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite+aiosqlite://"
os.environ["IMPORT_ENABLED"] = "false"

from app.core.database import create_tables, get_db
from app.services.checkpoint import CheckpointStore
from app.services.import_broadcaster import ImportBroadcaster
from app.services.log_importer import LogImporter, get_log_importer

TEST_DATABASE_URL = "sqlite+aiosqlite://"

QMGR_LINE = "2026-02-11T09:26:24.771360+01:00 mail postfix/qmgr[1234]: ABC123: from=<a@x.com>, size=512"
SMTP_LINE = (
    "2026-02-11T09:26:25.000000+01:00 mail postfix/smtp[1235]: ABC123: to=<b@y.com>, "
    "relay=mx.y.com, delay=0.42, dsn=2.0.0, status=sent (250 OK)"
)


# SQLite 不支持 BigInteger autoincrement，编译时替换为 Integer
from sqlalchemy.ext.compiler import compiles
@compiles(BigInteger, "sqlite")
def compile_big_int_sqlite(type_, compiler, **kw):
    return "INTEGER"


def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register date_trunc for SQLite so PG-specific SQL works in tests."""
    from datetime import datetime as _dt

    def _date_trunc(part, value):
        if value is None:
            return None
        if isinstance(value, str):
            for fmt in ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S"):
                try:
                    value = _dt.strptime(value, fmt)
                    break
                except ValueError:
                    continue
            else:
                return value
        part = part.lower()
        if part in ("hour", "hours"):
            return value.replace(minute=0, second=0, microsecond=0).strftime("%Y-%m-%d %H:%M:%S")
        elif part in ("day", "days"):
            return value.replace(hour=0, minute=0, second=0, microsecond=0).strftime("%Y-%m-%d %H:%M:%S")
        return value.strftime("%Y-%m-%d %H:%M:%S")

    dbapi_conn.create_function("date_trunc", 2, _date_trunc)


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine():
    """每个测试一个独立的内存数据库，测试前建表，测试后释放。"""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    event.listen(engine.sync_engine, "connect", _register_sqlite_functions)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """提供一个干净的数据库会话。"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def log_file(tmp_path):
    """临时 Postfix 日志文件路径（默认不创建）。"""
    return tmp_path / "logs" / "mail.log"


@pytest.fixture
def state_file(tmp_path):
    """临时检查点文件路径，父目录不存在以验证自动创建。"""
    return tmp_path / "data" / "log_state.json"


@pytest.fixture
def write_log(log_file):
    """写入日志文件内容，每行以换行结尾。"""
    def _write(*lines: str, mode: str = "w"):
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(log_file, mode, encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")
    return _write


@pytest.fixture
def broadcaster() -> ImportBroadcaster:
    return ImportBroadcaster()


@pytest.fixture
def importer(log_file, state_file, session_factory, broadcaster) -> LogImporter:
    """绑定临时文件和测试数据库的导入器。"""
    return LogImporter(
        log_file=log_file,
        checkpoint_store=CheckpointStore(state_file),
        session_factory=session_factory,
        sink=broadcaster,
    )


@pytest_asyncio.fixture
async def client(session_factory, importer: LogImporter) -> AsyncGenerator[AsyncClient, None]:
    """提供配置好依赖覆盖的异步 HTTP 测试客户端。"""
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_log_importer] = lambda: importer

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
