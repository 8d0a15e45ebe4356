# backend/courtbook/database.py

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import Settings


def build_engine(settings: Settings, **kwargs) -> Engine:
    """Create the SQLAlchemy engine for the configured database."""
    url = settings.resolved_database_url
    connect_args = {}
    if url.startswith("sqlite"):
        # SQLite connections are shared between FastAPI worker threads
        connect_args["check_same_thread"] = False

    engine = create_engine(url, connect_args=connect_args, **kwargs)

    if url.startswith("sqlite"):
        event.listen(engine, "connect", enable_sqlite_fk)

    return engine


def enable_sqlite_fk(dbapi_connection, _):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


# FastAPI dependency
def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
