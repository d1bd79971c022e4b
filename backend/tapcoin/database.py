"""
TapCoin - Database Setup

Async SQLAlchemy engine for the economy tables and the shared Redis client
used for pending referrals.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from redis import asyncio as aioredis

from .config import settings


# ============================================
# POSTGRESQL
# ============================================

def engine_options(url: str) -> dict:
    """Параметры движка: пул соединений только для серверных БД."""
    options = {"echo": settings.DEBUG, "pool_pre_ping": True}
    # SQLite (локальный запуск) работает без QueuePool
    if not make_url(url).get_backend_name().startswith("sqlite"):
        options["pool_size"] = settings.DB_POOL_SIZE
        options["max_overflow"] = settings.DB_MAX_OVERFLOW
    return options


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    """Dependency: one request, one transaction."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Создание таблиц экономики (без alembic, для локального запуска)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ============================================
# REDIS
# ============================================

redis_client = None


async def get_redis():
    """Общий Redis клиент (отложенные рефералы)."""
    global redis_client

    if redis_client is None:
        redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)

    return redis_client


async def close_redis():
    global redis_client

    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
