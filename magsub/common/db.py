"""Engine/session construction shared by the services."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker


def make_engine(database_url: str, **kwargs) -> Engine:
    """One engine per app; SQLite connections may hop between worker threads."""

    if make_url(database_url).get_backend_name() == "sqlite":
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    # Rows stay readable after commit; handlers build responses from them.
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base for every table of both services."""
