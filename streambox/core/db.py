from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from datetime import datetime, timezone
from sqlalchemy.orm import declarative_base

Base = declarative_base()

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        # sqlite+aiosqlite in tests/dev; busy timeout lets concurrent writers queue
        return create_async_engine(url, connect_args={"timeout": 30})
    return create_async_engine(url, pool_pre_ping=True)

def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)

async def create_all(engine: AsyncEngine) -> None:
    # Import models so every table is registered on Base.metadata
    from streambox.modules.accounts import models as _accounts  # noqa: F401
    from streambox.modules.assets import models as _assets  # noqa: F401
    from streambox.modules.sales import models as _sales  # noqa: F401
    from streambox.modules.subscriptions import models as _subscriptions  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
