from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
from quotedesk.config import settings
import structlog

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


# Unbound until init_db(); importing models never opens a connection.
AsyncSessionLocal = async_sessionmaker(class_=AsyncSession, expire_on_commit=False)

engine: Optional[AsyncEngine] = None


def _get_db_url() -> str:
    """Strip sslmode from URL since asyncpg uses connect_args for SSL."""
    url = settings.DATABASE_URL
    url = url.replace("?sslmode=require", "").replace("&sslmode=require", "")
    return url


def create_engine() -> AsyncEngine:
    connect_args = {"ssl": "require"} if settings.DATABASE_SSL else {}
    return create_async_engine(
        _get_db_url(),
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        echo=settings.DEBUG,
        connect_args=connect_args,
    )


async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    global engine
    if engine is None:
        engine = create_engine()
        AsyncSessionLocal.configure(bind=engine)
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        logger.info("db_connected")


async def close_db():
    global engine
    if engine is not None:
        await engine.dispose()
        engine = None
        logger.info("db_disconnected")
