"""Creativity mirror router: reflection history, entry storage, submissions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse
from sqlmodel import Session

from app.db import get_session
from app.dependencies import AuthSession, get_submission_workflow, require_auth
from app.models.reflection import (
    EntryCreate,
    EntryRead,
    ReflectionEntry,
    SubmitRequest,
    SubmitResponse,
)
from app.services.entries import InsertStatus, insert_entry, list_entries
from app.services.workflow import SubmissionOutcome, SubmissionWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mirror", tags=["mirror"])

SUBMIT_STATUS_CODES: dict[SubmissionOutcome, int] = {
    SubmissionOutcome.COMPLETED: 201,
    SubmissionOutcome.DUPLICATE_CONTENT: 409,
    SubmissionOutcome.EMPTY_INPUT: 422,
    SubmissionOutcome.NOT_AUTHENTICATED: 401,
    SubmissionOutcome.IGNORED: 429,
    SubmissionOutcome.GENERATION_FAILED: 502,
    SubmissionOutcome.PERSISTENCE_FAILED: 500,
}

UNIQUE_VIOLATION = "unique_violation"


@router.get("/entries", response_model=list[EntryRead])
async def get_entries(
    content: str | None = Query(None, description="Exact (trimmed) content to match"),
    limit: int | None = Query(None, ge=1, le=200),
    auth: AuthSession = Depends(require_auth),
    session: Session = Depends(get_session),
) -> list[ReflectionEntry]:
    """List the caller's entries, newest first."""
    return list_entries(session, auth.user_id, content=content, limit=limit)


@router.post("/entries", response_model=EntryRead, status_code=201)
async def create_entry(
    body: EntryCreate,
    auth: AuthSession = Depends(require_auth),
    session: Session = Depends(get_session),
):
    """Store a (content, reflection) pair for the caller.

    A uniqueness violation answers 409 with ``code`` set to
    ``unique_violation`` so clients can tell it apart from other failures.
    """
    result = insert_entry(session, auth.user_id, body.content, body.reflection)
    if result.status is InsertStatus.DUPLICATE:
        return JSONResponse(
            status_code=409,
            content={"detail": "Content already has a reflection", "code": UNIQUE_VIOLATION},
        )
    if result.status is InsertStatus.FAILED:
        return JSONResponse(status_code=500, content={"detail": "Failed to save entry"})
    return result.entry


@router.post("/submit", response_model=SubmitResponse)
async def submit(
    body: SubmitRequest,
    response: Response,
    workflow: SubmissionWorkflow = Depends(get_submission_workflow),
) -> SubmitResponse:
    """Run one submission attempt through the caller's session workflow."""
    result = await workflow.submit(body.content)
    response.status_code = SUBMIT_STATUS_CODES[result.outcome]
    return SubmitResponse(
        outcome=result.outcome.value,
        message=result.message,
        entry=EntryRead.model_validate(result.entry) if result.entry is not None else None,
        content=workflow.content,
        reflection=workflow.reflection,
        history=[EntryRead.model_validate(e) for e in workflow.history],
    )
