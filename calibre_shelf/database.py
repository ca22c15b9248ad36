"""
Database engines for the two stores.

- App store: user accounts, owned by this service (SQLite default, Postgres
  via APP_DATABASE_URL). Sessions come from the sessionmaker built here.
- Library store: Calibre's metadata.db, owned by Calibre. Opened read-only
  and kept open for the lifetime of the catalog service.
"""
import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def create_app_engine(database_url: str) -> Engine:
    # SQLite needs check_same_thread=False for FastAPI's thread pool; Postgres does not
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_library_engine(db_path: str) -> Engine:
    """
    Open Calibre's metadata.db read-only. The file must already exist; this
    service never creates or writes the library.
    """
    abs_path = os.path.abspath(db_path)
    if not os.path.isfile(abs_path):
        raise RuntimeError(f"Calibre library database not found: {abs_path}")
    engine = create_engine(
        f"sqlite:///file:{abs_path}?mode=ro&uri=true",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def register_casefold(dbapi_conn, connection_record):
        # SQLite's lower() only folds ASCII; search needs full Unicode folding
        dbapi_conn.create_function("casefold", 1, _casefold, deterministic=True)

    return engine


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


def init_app_store(engine: Engine) -> None:
    """Create the users table if it does not exist."""
    # models registers its tables on Base
    from calibre_shelf import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
