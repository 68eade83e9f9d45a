"""FastAPI dependency injection for auth, LLM and the submission workflow."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from sqlalchemy.engine import Engine
from sqlmodel import Session

from app import session_state
from app.config import get_settings
from app.db import get_engine
from app.models.auth import User
from app.routers.auth import AuthSession, _get_auth_session
from app.services.entries import SQLEntryRepository
from app.services.llm import LLMService
from app.services.reflection import LLMReflectionGenerator
from app.services.workflow import (
    MirrorContext,
    ReflectionGenerator,
    SubmissionWorkflow,
    UserIdentity,
)


def require_auth(auth: AuthSession = Depends(_get_auth_session)) -> AuthSession:
    """Auth guard for every endpoint outside the auth router.

    Accepts the access token as a Bearer header or as the session cookie.
    """
    return auth


class DatabaseSessionStore:
    """Resolves the session's user from the database on every call."""

    def __init__(self, engine: Engine, user_id: str) -> None:
        self._engine = engine
        self._user_id = user_id

    async def get_current_user(self) -> UserIdentity | None:
        with Session(self._engine) as db:
            user = db.get(User, self._user_id)
            if user is None:
                return None
            return UserIdentity(id=user.id, email=user.email)


def get_llm_service(request: Request) -> LLMService:
    """Inject the LLMService initialized at startup."""
    svc = getattr(request.app.state, "llm_service", None)
    if svc is None:
        raise HTTPException(
            status_code=503,
            detail="LLM service unavailable",
        )
    return svc


def get_reflection_generator(
    llm: LLMService = Depends(get_llm_service),
) -> ReflectionGenerator:
    return LLMReflectionGenerator(llm)


def get_entry_repository(engine: Engine = Depends(get_engine)) -> SQLEntryRepository:
    return SQLEntryRepository(engine)


async def get_submission_workflow(
    auth: AuthSession = Depends(require_auth),
    engine: Engine = Depends(get_engine),
    repository: SQLEntryRepository = Depends(get_entry_repository),
    generator: ReflectionGenerator = Depends(get_reflection_generator),
) -> SubmissionWorkflow:
    """Return the session's workflow, creating it (and loading history) on first use."""
    workflow = session_state.get_workflow(auth.session_id)
    if workflow is not None:
        return workflow

    timeout = get_settings().generation_timeout_seconds
    context = MirrorContext(
        session_store=DatabaseSessionStore(engine, auth.user_id),
        repository=repository,
        generator=generator,
        generation_timeout=timeout if timeout > 0 else None,
    )
    created = SubmissionWorkflow(context)
    try:
        workflow = session_state.attach_workflow(auth.session_id, created)
    except KeyError:
        raise HTTPException(status_code=401, detail="Session expired, please sign in again")
    if workflow is created:
        await workflow.refresh_history()
    return workflow
