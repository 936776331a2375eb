from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def get_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    url = make_url(database_url)
    kwargs = {"echo": echo}
    if url.get_backend_name() != "sqlite":
        kwargs.update(pool_pre_ping=True, pool_size=5, max_overflow=10)
    return create_async_engine(url, **kwargs)


def get_session(engine):
    # objects stay readable after commit; handlers return them directly
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False
    )


async def create_all(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
