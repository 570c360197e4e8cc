from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .models import Base
from .settings import DATABASE_URL

# sqlite has no server connection to ping
_engine_kw = {} if DATABASE_URL.startswith("sqlite") else {"pool_pre_ping": True}
engine = create_async_engine(DATABASE_URL, **_engine_kw)
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
