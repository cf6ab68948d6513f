"""
数据库配置和连接管理

引擎按需创建：导入本模块不会加载数据库驱动，测试可以注入自己的引擎。
"""
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新 DATABASE__URL")

    return url.set(drivername=driver_map[drivername]).render_as_string(hide_password=False)


def build_engine(database_url: Optional[str] = None, **kwargs) -> AsyncEngine:
    kwargs.setdefault("echo", settings.database.echo)
    return create_async_engine(_build_async_url(database_url or settings.database.url), **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """根据 models 中定义的所有模型创建对应的数据库表"""
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(engine: Optional[AsyncEngine] = None) -> None:
    """
    删除所有表

    警告：仅用于测试环境，会删除所有数据！
    """
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
