"""Storage of reflection entries.

SQLEntryRepository opens a short-lived Session per call so one instance can
outlive any single request (it is held by a session's workflow).
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from app.models.reflection import ReflectionEntry

logger = logging.getLogger(__name__)


class InsertStatus(str, enum.Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"  # (owner_id, content) already stored
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class InsertResult:
    """Outcome of an insert: the created entry, a uniqueness violation, or another failure."""

    status: InsertStatus
    entry: ReflectionEntry | None = None
    detail: str = ""

    @classmethod
    def inserted(cls, entry: ReflectionEntry) -> InsertResult:
        return cls(InsertStatus.INSERTED, entry=entry)

    @classmethod
    def duplicate(cls) -> InsertResult:
        return cls(InsertStatus.DUPLICATE, detail="content already submitted")

    @classmethod
    def failed(cls, detail: str) -> InsertResult:
        return cls(InsertStatus.FAILED, detail=detail)


def find_entry(session: Session, owner_id: str, content: str) -> str | None:
    """Return the id of the owner's entry with exactly this content, if any."""
    return session.exec(
        select(ReflectionEntry.id)
        .where(ReflectionEntry.owner_id == owner_id, ReflectionEntry.content == content)
        .limit(1)
    ).first()


def list_entries(
    session: Session,
    owner_id: str,
    content: str | None = None,
    limit: int | None = None,
) -> list[ReflectionEntry]:
    """Owner's entries, newest first, optionally filtered to one exact content."""
    statement = select(ReflectionEntry).where(ReflectionEntry.owner_id == owner_id)
    if content is not None:
        statement = statement.where(ReflectionEntry.content == content)
    statement = statement.order_by(
        col(ReflectionEntry.created_at).desc(), col(ReflectionEntry.id).desc()
    )
    if limit is not None:
        statement = statement.limit(limit)
    return list(session.exec(statement).all())


def insert_entry(
    session: Session, owner_id: str, content: str, reflection: str
) -> InsertResult:
    """Insert a new entry and classify any failure.

    An IntegrityError is only reported as DUPLICATE when the conflicting row
    is actually there after rollback; other integrity failures (e.g. unknown
    owner) are FAILED.
    """
    entry = ReflectionEntry(owner_id=owner_id, content=content, reflection=reflection)
    session.add(entry)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if find_entry(session, owner_id, content) is not None:
            logger.info("Duplicate entry rejected for owner %s", owner_id)
            return InsertResult.duplicate()
        logger.warning("Entry insert violated a constraint for owner %s", owner_id, exc_info=True)
        return InsertResult.failed(f"integrity error: {exc.orig}")
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Entry insert failed for owner %s", owner_id)
        return InsertResult.failed(str(exc))
    session.refresh(entry)
    return InsertResult.inserted(entry)


class SQLEntryRepository:
    """Workflow persistence collaborator backed by the application database."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    async def exists(self, owner_id: str, content: str) -> bool:
        with Session(self._engine) as session:
            return find_entry(session, owner_id, content) is not None

    async def insert(self, owner_id: str, content: str, reflection: str) -> InsertResult:
        with Session(self._engine, expire_on_commit=False) as session:
            try:
                return insert_entry(session, owner_id, content, reflection)
            except SQLAlchemyError as exc:
                # rollback/refresh itself failed (connection lost)
                logger.exception("Entry insert failed for owner %s", owner_id)
                return InsertResult.failed(str(exc))

    async def list_for_owner(self, owner_id: str) -> list[ReflectionEntry]:
        with Session(self._engine, expire_on_commit=False) as session:
            return list_entries(session, owner_id)
