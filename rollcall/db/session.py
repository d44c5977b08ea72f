from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def create_local_engine(database_url: str) -> AsyncEngine:
    # The local area is a single-process convenience store; no pool tuning needed.
    return create_async_engine(database_url, echo=False, future=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_local_schema(engine: AsyncEngine) -> None:
    """Create the key-value table if it does not exist yet."""
    # Registers the mapped tables on Base.metadata
    from rollcall.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
