from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, field_validator
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class ReflectionEntry(SQLModel, table=True):
    """A submitted piece of creative content and its generated reflection.

    Created once after a successful generation and never mutated. Content is
    stored trimmed; (owner_id, content) is unique per owner.
    """

    __tablename__ = "creativity_mirror"
    __table_args__ = (
        UniqueConstraint("owner_id", "content", name="uq_creativity_mirror_owner_content"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    owner_id: str = Field(foreign_key="users.id", index=True)
    content: str
    reflection: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EntryRead(BaseModel):
    id: str
    owner_id: str
    content: str
    reflection: str
    created_at: datetime

    model_config = {"from_attributes": True}


class EntryCreate(BaseModel):
    content: str
    reflection: str

    @field_validator("content")
    @classmethod
    def _trim_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("content must not be empty")
        return v


class GenerateRequest(BaseModel):
    content: str


class GenerateResponse(BaseModel):
    reflection: str


class SubmitRequest(BaseModel):
    content: str = ""


class SubmitResponse(BaseModel):
    outcome: str
    message: str
    entry: EntryRead | None = None
    content: str  # input as left after the attempt (cleared on success)
    reflection: str  # transient reflection text (cleared on success)
    history: list[EntryRead] = []  # the session's entries, newest first
