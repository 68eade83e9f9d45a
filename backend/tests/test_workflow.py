"""Tests for the reflection submission workflow state machine."""

from __future__ import annotations

import asyncio

import pytest
from sqlmodel import select

from app.models.reflection import ReflectionEntry
from app.services.entries import InsertResult, SQLEntryRepository
from app.services.reflection import GenerationError
from app.services.workflow import (
    MESSAGES,
    MirrorContext,
    SubmissionOutcome,
    SubmissionState,
    SubmissionWorkflow,
    UserIdentity,
)

S = SubmissionState
HAPPY_PATH = [S.IDLE, S.CHECKING_DUPLICATE, S.GENERATING, S.PERSISTING, S.COMPLETED]


# ── Fakes ────────────────────────────────────────────────────────────


class FakeSessionStore:
    def __init__(self, user: UserIdentity | None = UserIdentity(id="u1")) -> None:
        self.user = user
        self.error: Exception | None = None

    async def get_current_user(self) -> UserIdentity | None:
        if self.error is not None:
            raise self.error
        return self.user


class FakeRepository:
    """In-memory store with the per-owner uniqueness rule."""

    def __init__(self) -> None:
        self.entries: list[ReflectionEntry] = []
        self.calls: list[str] = []
        self.exists_error: Exception | None = None
        self.list_error: Exception | None = None
        self.forced_insert: InsertResult | None = None

    async def exists(self, owner_id: str, content: str) -> bool:
        self.calls.append("exists")
        if self.exists_error is not None:
            raise self.exists_error
        return any(e.owner_id == owner_id and e.content == content for e in self.entries)

    async def insert(self, owner_id: str, content: str, reflection: str) -> InsertResult:
        self.calls.append("insert")
        if self.forced_insert is not None:
            return self.forced_insert
        if any(e.owner_id == owner_id and e.content == content for e in self.entries):
            return InsertResult.duplicate()
        entry = ReflectionEntry(owner_id=owner_id, content=content, reflection=reflection)
        self.entries.append(entry)
        return InsertResult.inserted(entry)

    async def list_for_owner(self, owner_id: str) -> list[ReflectionEntry]:
        self.calls.append("list")
        if self.list_error is not None:
            raise self.list_error
        return [e for e in reversed(self.entries) if e.owner_id == owner_id]


class FakeGenerator:
    def __init__(self, reply: str = "You seem to find stillness in color.") -> None:
        self.reply = reply
        self.calls: list[str] = []
        self.error: Exception | None = None

    async def generate(self, content: str) -> str:
        self.calls.append(content)
        if self.error is not None:
            raise self.error
        return self.reply


class GatedGenerator(FakeGenerator):
    """Blocks inside generate() until released."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, content: str) -> str:
        self.calls.append(content)
        self.started.set()
        await self.release.wait()
        return self.reply


@pytest.fixture(name="store")
def store_fixture() -> FakeSessionStore:
    return FakeSessionStore()


@pytest.fixture(name="repo")
def repo_fixture() -> FakeRepository:
    return FakeRepository()


@pytest.fixture(name="generator")
def generator_fixture() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture(name="workflow")
def workflow_fixture(store, repo, generator) -> SubmissionWorkflow:
    return SubmissionWorkflow(MirrorContext(store, repo, generator))


# ── Happy path ───────────────────────────────────────────────────────


class TestCompleted:
    @pytest.mark.asyncio
    async def test_new_content_creates_exactly_one_entry(self, workflow, repo, generator) -> None:
        result = await workflow.submit("  Today I painted.  ")

        assert result.outcome is SubmissionOutcome.COMPLETED
        assert result.state is S.COMPLETED
        assert result.transitions == HAPPY_PATH
        assert result.ok
        assert len(repo.entries) == 1
        assert repo.entries[0].content == "Today I painted."
        assert result.entry is repo.entries[0]
        assert generator.calls == ["Today I painted."]

    @pytest.mark.asyncio
    async def test_success_clears_input_and_refreshes_history(self, workflow, repo) -> None:
        await workflow.submit("First piece")
        result = await workflow.submit("Second piece")

        assert result.ok
        assert workflow.content == ""
        assert workflow.reflection == ""
        assert [e.content for e in workflow.history] == ["Second piece", "First piece"]
        assert repo.calls == ["exists", "insert", "list"] * 2
        assert workflow.state is S.IDLE
        assert workflow.in_flight is False

    @pytest.mark.asyncio
    async def test_submit_without_argument_uses_current_input(self, workflow, repo) -> None:
        workflow.content = "A sketch of my cat"
        result = await workflow.submit()
        assert result.ok
        assert repo.entries[0].content == "A sketch of my cat"

    @pytest.mark.asyncio
    async def test_history_refresh_failure_keeps_completed(self, workflow, repo) -> None:
        await workflow.submit("First piece")
        repo.list_error = RuntimeError("network down")

        result = await workflow.submit("Second piece")

        assert result.outcome is SubmissionOutcome.COMPLETED
        assert [e.content for e in workflow.history] == ["First piece"]
        assert len(repo.entries) == 2


# ── Rejections before the state machine ──────────────────────────────


class TestBoundary:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", "\n\t "])
    async def test_empty_input(self, workflow, repo, generator, content) -> None:
        result = await workflow.submit(content)
        assert result.outcome is SubmissionOutcome.EMPTY_INPUT
        assert result.transitions == []
        assert repo.calls == []
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_not_authenticated_short_circuits(self, workflow, store, repo, generator) -> None:
        store.user = None
        result = await workflow.submit("Today I painted.")

        assert result.outcome is SubmissionOutcome.NOT_AUTHENTICATED
        assert repo.calls == []
        assert generator.calls == []
        assert workflow.content == "Today I painted."

    @pytest.mark.asyncio
    async def test_session_lookup_error_is_a_failure(self, workflow, store, repo, generator) -> None:
        store.error = RuntimeError("auth service down")
        result = await workflow.submit("Today I painted.")

        assert result.outcome is SubmissionOutcome.PERSISTENCE_FAILED
        assert result.transitions == [S.IDLE, S.FAILED]
        assert repo.calls == []
        assert generator.calls == []
        assert workflow.content == "Today I painted."


# ── Duplicates ───────────────────────────────────────────────────────


class TestDuplicate:
    @pytest.mark.asyncio
    async def test_resubmitting_trimmed_content_is_rejected(self, workflow, repo, generator) -> None:
        first = await workflow.submit("  Today I painted.  ")
        assert first.ok

        second = await workflow.submit("Today I painted.")

        assert second.outcome is SubmissionOutcome.DUPLICATE_CONTENT
        assert second.state is S.REJECTED_DUPLICATE
        assert second.transitions == [S.IDLE, S.CHECKING_DUPLICATE, S.REJECTED_DUPLICATE]
        assert generator.calls == ["Today I painted."]  # not called again
        assert len(repo.entries) == 1
        assert workflow.content == "Today I painted."

    @pytest.mark.asyncio
    async def test_constraint_violation_at_insert_is_duplicate(self, workflow, repo) -> None:
        repo.forced_insert = InsertResult.duplicate()
        result = await workflow.submit("Raced content")

        assert result.outcome is SubmissionOutcome.DUPLICATE_CONTENT
        assert result.transitions == [
            S.IDLE, S.CHECKING_DUPLICATE, S.GENERATING, S.PERSISTING, S.REJECTED_DUPLICATE,
        ]
        assert workflow.content == "Raced content"

    @pytest.mark.asyncio
    async def test_other_owners_content_is_not_a_duplicate(self, repo, generator) -> None:
        alice = SubmissionWorkflow(MirrorContext(FakeSessionStore(UserIdentity("alice")), repo, generator))
        bob = SubmissionWorkflow(MirrorContext(FakeSessionStore(UserIdentity("bob")), repo, generator))
        assert (await alice.submit("Same words")).ok
        assert (await bob.submit("Same words")).ok


# ── Failures ─────────────────────────────────────────────────────────


class TestFailures:
    @pytest.mark.asyncio
    async def test_generation_failure(self, workflow, repo, generator) -> None:
        generator.error = GenerationError("HTTP 500")
        result = await workflow.submit("A poem draft")

        assert result.outcome is SubmissionOutcome.GENERATION_FAILED
        assert result.state is S.FAILED
        assert repo.entries == []
        assert "insert" not in repo.calls
        assert workflow.content == "A poem draft"

    @pytest.mark.asyncio
    async def test_generation_timeout(self, repo, store) -> None:
        generator = GatedGenerator()  # never released
        workflow = SubmissionWorkflow(
            MirrorContext(store, repo, generator, generation_timeout=0.05)
        )
        result = await workflow.submit("A poem draft")

        assert result.outcome is SubmissionOutcome.GENERATION_FAILED
        assert workflow.in_flight is False
        assert repo.entries == []

    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_input(self, workflow, repo, generator) -> None:
        repo.forced_insert = InsertResult.failed("disk full")
        result = await workflow.submit("A poem draft")

        assert result.outcome is SubmissionOutcome.PERSISTENCE_FAILED
        assert result.state is S.FAILED
        assert workflow.content == "A poem draft"
        assert workflow.reflection == generator.reply
        assert "list" not in repo.calls

    @pytest.mark.asyncio
    async def test_duplicate_check_error_is_persistence_failure(self, workflow, repo, generator) -> None:
        repo.exists_error = RuntimeError("db locked")
        result = await workflow.submit("A poem draft")

        assert result.outcome is SubmissionOutcome.PERSISTENCE_FAILED
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_guard_released_after_failure(self, workflow, generator) -> None:
        generator.error = GenerationError("boom")
        await workflow.submit("A poem draft")
        generator.error = None

        result = await workflow.submit()
        assert result.ok

    def test_every_outcome_has_a_distinct_message(self) -> None:
        assert set(MESSAGES) == set(SubmissionOutcome)
        assert len(set(MESSAGES.values())) == len(MESSAGES)


# ── Concurrency ──────────────────────────────────────────────────────


class TestInFlightGuard:
    @pytest.mark.asyncio
    async def test_submit_while_in_flight_is_ignored(self, store, repo) -> None:
        generator = GatedGenerator()
        workflow = SubmissionWorkflow(MirrorContext(store, repo, generator))

        first = asyncio.create_task(workflow.submit("First thought"))
        await generator.started.wait()
        calls_before = list(repo.calls)

        ignored = await workflow.submit("Second thought")

        assert ignored.outcome is SubmissionOutcome.IGNORED
        assert workflow.in_flight is True
        assert workflow.state is S.GENERATING
        assert workflow.content == "First thought"
        assert repo.calls == calls_before
        assert generator.calls == ["First thought"]

        generator.release.set()
        result = await first
        assert result.ok
        assert [e.content for e in repo.entries] == ["First thought"]

    @pytest.mark.asyncio
    async def test_concurrent_identical_submissions_store_one_entry(self, engine, user, session) -> None:
        """Two sessions of one user race past the duplicate check; the constraint decides."""
        repository = SQLEntryRepository(engine)
        generator = GatedGenerator()
        identity = UserIdentity(id=user.id)
        tab_a = SubmissionWorkflow(MirrorContext(FakeSessionStore(identity), repository, generator))
        tab_b = SubmissionWorkflow(MirrorContext(FakeSessionStore(identity), repository, generator))

        tasks = [
            asyncio.create_task(tab_a.submit("Same painting")),
            asyncio.create_task(tab_b.submit("  Same painting ")),
        ]
        while len(generator.calls) < 2:
            await asyncio.sleep(0)
        generator.release.set()
        results = await asyncio.gather(*tasks)

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["completed", "duplicate_content"]
        rows = session.exec(select(ReflectionEntry).where(ReflectionEntry.owner_id == user.id)).all()
        assert len(rows) == 1
        assert rows[0].content == "Same painting"
