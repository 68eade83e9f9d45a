from __future__ import annotations

import sqlite3
from collections.abc import Generator

from fastapi import Depends
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from app.config import get_settings


@event.listens_for(Engine, "connect")
def _set_sqlite_pragmas(dbapi_connection, connection_record):
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def _connect_args(db_url: str) -> dict:
    if db_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    get_settings().db_url,
    echo=False,
    connect_args=_connect_args(get_settings().db_url),
)


def create_db_and_tables(eng: Engine | None = None) -> None:
    SQLModel.metadata.create_all(eng or engine)


def get_engine() -> Engine:
    """Engine used by request handlers and per-session repositories."""
    return engine


def get_session(eng: Engine = Depends(get_engine)) -> Generator[Session, None, None]:
    with Session(eng) as session:
        yield session
