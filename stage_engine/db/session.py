from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stage_engine.core.config import settings


def build_engine(database_url: str | None = None, echo: bool | None = None) -> Engine:
    """Create an engine; in-memory sqlite shares one connection across sessions."""
    url = make_url(database_url or settings.DATABASE_URL)
    kwargs: dict = {"echo": settings.SQL_ECHO if echo is None else echo}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return create_engine(url, **kwargs)


engine = build_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
