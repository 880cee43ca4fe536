from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import JSON, text
from sqlalchemy.dialects.postgresql import JSONB
import structlog

from eapproval.config import Settings, settings as default_settings

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


def _get_db_url(url: str) -> str:
    """Strip sslmode from URL since asyncpg uses connect_args for SSL."""
    return url.replace("?sslmode=require", "").replace("&sslmode=require", "")


def build_engine(cfg: Optional[Settings] = None) -> AsyncEngine:
    cfg = cfg or default_settings
    url = _get_db_url(cfg.DATABASE_URL)
    if cfg.is_sqlite:
        # SQLite serializes writers; the busy timeout lets a racing decision
        # wait for the lock and then fail its version check.
        return create_async_engine(
            url, echo=cfg.DEBUG, connect_args={"timeout": 30}
        )
    return create_async_engine(
        url,
        pool_size=cfg.DB_POOL_SIZE,
        max_overflow=cfg.DB_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=cfg.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        echo=cfg.DEBUG,
        connect_args={"ssl": "require"} if "sslmode=require" in cfg.DATABASE_URL else {},
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency: the session factory the app was built with."""
    return request.app.state.session_factory


async def get_db(request: Request):
    async with request.app.state.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_db(session_factory: async_sessionmaker[AsyncSession]) -> None:
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))
    logger.info("db_connected")


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
    logger.info("db_disconnected")


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
