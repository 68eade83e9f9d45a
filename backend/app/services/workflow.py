"""Reflection submission workflow.

One SubmissionWorkflow belongs to one user session. It turns a piece of
input text into at most one stored ReflectionEntry:

    Idle -> CheckingDuplicate -> Generating -> Persisting -> Completed
                 |                   |             |
                 v                   v             v
         RejectedDuplicate         Failed   RejectedDuplicate / Failed

The duplicate check is only a fast path that saves a generation call. The
uniqueness constraint at insert time is what actually prevents duplicates
when identical content is submitted concurrently (double click, two tabs),
so a DUPLICATE insert result is an expected outcome, not a fault.

Every attempt ends in exactly one SubmissionResult; no error escapes
``submit``. Collaborator calls run strictly in order and an attempt that has
left Idle always runs to a terminal state.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Protocol

from app.models.reflection import ReflectionEntry
from app.services.entries import InsertResult, InsertStatus

logger = logging.getLogger(__name__)


# ── Collaborator contracts ──────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class UserIdentity:
    id: str
    email: str = ""


class SessionStore(Protocol):
    async def get_current_user(self) -> UserIdentity | None: ...


class EntryRepository(Protocol):
    async def exists(self, owner_id: str, content: str) -> bool: ...

    async def insert(self, owner_id: str, content: str, reflection: str) -> InsertResult: ...

    async def list_for_owner(self, owner_id: str) -> list[ReflectionEntry]: ...


class ReflectionGenerator(Protocol):
    async def generate(self, content: str) -> str: ...


@dataclass
class MirrorContext:
    """Collaborators for one session's workflow, built explicitly per session."""

    session_store: SessionStore
    repository: EntryRepository
    generator: ReflectionGenerator
    generation_timeout: float | None = None  # seconds; None waits indefinitely


# ── States, outcomes, errors ────────────────────────────────────────


class SubmissionState(str, enum.Enum):
    IDLE = "idle"
    CHECKING_DUPLICATE = "checking_duplicate"
    GENERATING = "generating"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED_DUPLICATE = "rejected_duplicate"


class SubmissionOutcome(str, enum.Enum):
    COMPLETED = "completed"
    DUPLICATE_CONTENT = "duplicate_content"
    GENERATION_FAILED = "generation_failed"
    PERSISTENCE_FAILED = "persistence_failed"
    NOT_AUTHENTICATED = "not_authenticated"
    EMPTY_INPUT = "empty_input"
    IGNORED = "ignored"  # another attempt was already in flight


MESSAGES: dict[SubmissionOutcome, str] = {
    SubmissionOutcome.COMPLETED: "Reflection generated successfully",
    SubmissionOutcome.DUPLICATE_CONTENT: (
        "You've already received a reflection for this content. "
        "Please try different content."
    ),
    SubmissionOutcome.GENERATION_FAILED: "Failed to generate reflection",
    SubmissionOutcome.PERSISTENCE_FAILED: "Failed to save reflection",
    SubmissionOutcome.NOT_AUTHENTICATED: "Please sign in to get a reflection",
    SubmissionOutcome.EMPTY_INPUT: "Please enter some content first",
    SubmissionOutcome.IGNORED: "A reflection is already being generated",
}


class MirrorError(Exception):
    """Base for errors that end a submission attempt."""

    outcome: SubmissionOutcome
    state: SubmissionState = SubmissionState.FAILED


class NotAuthenticated(MirrorError):
    outcome = SubmissionOutcome.NOT_AUTHENTICATED


class DuplicateContent(MirrorError):
    outcome = SubmissionOutcome.DUPLICATE_CONTENT
    state = SubmissionState.REJECTED_DUPLICATE


class GenerationFailed(MirrorError):
    outcome = SubmissionOutcome.GENERATION_FAILED


class PersistenceFailed(MirrorError):
    outcome = SubmissionOutcome.PERSISTENCE_FAILED


@dataclass
class SubmissionResult:
    outcome: SubmissionOutcome
    state: SubmissionState
    transitions: list[SubmissionState] = field(default_factory=list)
    entry: ReflectionEntry | None = None

    @property
    def message(self) -> str:
        return MESSAGES[self.outcome]

    @property
    def ok(self) -> bool:
        return self.outcome is SubmissionOutcome.COMPLETED


# ── Workflow ────────────────────────────────────────────────────────


class SubmissionWorkflow:
    """Per-session submission state: input, transient reflection, history, guard."""

    def __init__(self, context: MirrorContext) -> None:
        self.context = context
        self.content: str = ""
        self.reflection: str = ""
        self.history: list[ReflectionEntry] = []
        self.state = SubmissionState.IDLE
        self._in_flight = False
        self._transitions: list[SubmissionState] = []

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _enter(self, state: SubmissionState) -> None:
        self.state = state
        self._transitions.append(state)

    async def submit(self, content: str | None = None) -> SubmissionResult:
        """Run one submission attempt for ``content`` (or the current input).

        A call made while another attempt is in flight is ignored and changes
        nothing, including the stored input.
        """
        if self._in_flight:
            return SubmissionResult(SubmissionOutcome.IGNORED, self.state)

        if content is not None:
            self.content = content
        trimmed = self.content.strip()
        if not trimmed:
            return SubmissionResult(SubmissionOutcome.EMPTY_INPUT, SubmissionState.IDLE)

        self._in_flight = True
        self._transitions = [SubmissionState.IDLE]
        try:
            entry = await self._run(trimmed)
        except MirrorError as exc:
            self._enter(exc.state)
            logger.info("Submission ended with %s", exc.outcome.value)
            return SubmissionResult(exc.outcome, exc.state, list(self._transitions))
        finally:
            self._in_flight = False
            self.state = SubmissionState.IDLE

        return SubmissionResult(
            SubmissionOutcome.COMPLETED,
            SubmissionState.COMPLETED,
            list(self._transitions),
            entry=entry,
        )

    async def _run(self, trimmed: str) -> ReflectionEntry:
        ctx = self.context
        try:
            user = await ctx.session_store.get_current_user()
        except Exception as exc:
            # the store could not answer; only an absent user is NotAuthenticated
            logger.exception("Session lookup failed")
            raise PersistenceFailed() from exc
        if user is None:
            raise NotAuthenticated()

        self._enter(SubmissionState.CHECKING_DUPLICATE)
        try:
            already_stored = await ctx.repository.exists(user.id, trimmed)
        except Exception as exc:
            logger.exception("Duplicate check failed for user %s", user.id)
            raise PersistenceFailed() from exc
        if already_stored:
            raise DuplicateContent()

        self._enter(SubmissionState.GENERATING)
        try:
            self.reflection = await asyncio.wait_for(
                ctx.generator.generate(trimmed), timeout=ctx.generation_timeout
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Reflection generation timed out after %ss", ctx.generation_timeout
            )
            raise GenerationFailed() from exc
        except Exception as exc:
            logger.warning("Reflection generation failed: %s", exc)
            raise GenerationFailed() from exc

        self._enter(SubmissionState.PERSISTING)
        try:
            result = await ctx.repository.insert(user.id, trimmed, self.reflection)
        except Exception as exc:
            logger.exception("Entry insert raised for user %s", user.id)
            raise PersistenceFailed() from exc
        if result.status is InsertStatus.DUPLICATE:
            raise DuplicateContent()
        if result.status is not InsertStatus.INSERTED:
            logger.warning("Entry insert failed for user %s: %s", user.id, result.detail)
            raise PersistenceFailed()

        self._enter(SubmissionState.COMPLETED)
        await self.refresh_history(user)
        self.content = ""
        self.reflection = ""
        return result.entry

    async def refresh_history(self, user: UserIdentity | None = None) -> list[ReflectionEntry]:
        """Reload the user's entries, newest first.

        A failed reload is logged and keeps the previous history.
        """
        ctx = self.context
        try:
            if user is None:
                user = await ctx.session_store.get_current_user()
            if user is None:
                return self.history
            self.history = await ctx.repository.list_for_owner(user.id)
        except Exception:
            logger.warning("Failed to load reflection history", exc_info=True)
        return self.history
