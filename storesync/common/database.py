from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .db import Base

# Table registration
from ..customers import model as _customers  # noqa: F401
from ..inventory import model as _inventory  # noqa: F401
from ..orders import model as _orders  # noqa: F401
from ..remote import model as _remote  # noqa: F401


def make_engine(db_url: Optional[str] = None) -> AsyncEngine:
    url = db_url or settings.DB_URL
    connect_args = {}
    if url.startswith("sqlite"):
        # Writers wait on the database lock instead of failing fast.
        connect_args["timeout"] = 30
    return create_async_engine(url, future=True, echo=settings.DB_ECHO, connect_args=connect_args)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
