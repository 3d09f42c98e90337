"""
数据库引擎与会话工厂

账本依赖行级原子更新与唯一约束：生产使用 PostgreSQL (asyncpg)，
测试与本地开发可使用 SQLite (aiosqlite)。
"""
from typing import Any, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    if url.drivername not in _ASYNC_DRIVERS:
        raise ValueError(f"不支持的数据库驱动: {url.drivername}. 请使用 postgresql 或 sqlite (DATABASE__URL)")
    return str(url.set(drivername=_ASYNC_DRIVERS[url.drivername]))


def _engine_options(async_url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.database.echo}
    # SQLite 不支持连接池参数
    if not make_url(async_url).drivername.startswith("sqlite"):
        options.update(
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_pre_ping=True,
        )
    return options


_async_url = _build_async_url(settings.database.url)
engine = create_async_engine(_async_url, **_engine_options(_async_url))

# 会话工厂：提交后不过期，实体转换在会话关闭后仍可读取属性
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def create_tables():
    """
    创建所有表（仅开发环境）

    生产环境请使用 Alembic 迁移：alembic upgrade head
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
