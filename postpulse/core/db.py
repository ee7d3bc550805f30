"""Database module with async SQLAlchemy engine and session management."""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from tenacity import retry, stop_after_attempt, wait_exponential, before_sleep_log

from .logging import get_logger
from .settings import get_settings

settings = get_settings()
logger = get_logger(__name__)

# SQLAlchemy base for models
Base = declarative_base()


def build_engine(db_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    if db_url.startswith("sqlite"):
        return create_async_engine(db_url, echo=echo)
    return create_async_engine(
        db_url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# Async engine
async_engine = build_engine(settings.db_url, echo=settings.debug)

# Async session maker
AsyncSessionLocal = build_session_factory(async_engine)


@retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=8.0),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def init_db(engine: AsyncEngine = async_engine) -> None:
    """Wait until the database accepts connections."""
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Database connection established")


async def create_all(engine: AsyncEngine = async_engine) -> None:
    """Create all tables in the database."""
    # Register models on Base.metadata
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all(engine: AsyncEngine = async_engine) -> None:
    """Drop all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
