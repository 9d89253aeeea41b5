import math

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import get_settings

Base = declarative_base()


def create_db_engine(url: str, **kwargs) -> Engine:
    """
    Build an engine for ``url``.

    SQLite ships without trigonometric functions, so ``cos`` is registered on
    every new connection; the distance ordering of the office search needs it.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine = create_engine(url, connect_args=connect_args, **kwargs)

        @event.listens_for(engine, "connect")
        def _register_functions(dbapi_connection, connection_record):
            dbapi_connection.create_function("cos", 1, math.cos)

        return engine
    return create_engine(url, pool_pre_ping=True, **kwargs)


engine = create_db_engine(get_settings().database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


DEFAULT_TAGS = ("has_ac", "has_private_bathroom", "has_coffee_machine")


def init_db(bind: Engine = engine) -> None:
    """Create tables and seed the default tags on an empty database."""
    from . import models

    Base.metadata.create_all(bind=bind)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=bind)
    with session_factory() as db:
        if db.query(models.Tag).count() == 0:
            db.add_all([models.Tag(name=name) for name in DEFAULT_TAGS])
            db.commit()
