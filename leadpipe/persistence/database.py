"""Local leads database: async engine, session factory and declarative base."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from leadpipe.settings import get_async_database_url

database_url = get_async_database_url()

# SQLite (local runs) has no server-side connections to recycle
_pool_options = {} if database_url.startswith("sqlite") else {"pool_pre_ping": True, "pool_recycle": 1800}

engine = create_async_engine(database_url, echo=False, **_pool_options)

# One session per unit of work; callers open it with ``async with``
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()
