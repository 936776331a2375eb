from shared.config import get_settings
from shared.database import Base, get_engine, get_session

__all__ = ["Base", "engine", "session_factory", "get_db"]

_engine = None
_session_factory = None


def engine():
    global _engine
    if _engine is None:
        _engine = get_engine(get_settings().database_url)
    return _engine


def session_factory():
    global _session_factory
    if _session_factory is None:
        _session_factory = get_session(engine())
    return _session_factory


async def get_db():
    async with session_factory()() as session:
        yield session
