"""Async data-access client for the Creativity Mirror API.

MirrorClient wraps an ``httpx.AsyncClient`` whose cookie jar carries the
session: login/signup store the access-token cookie set by the server and
every later request sends it back, logout clears it. ``workflow()`` builds a
client-side SubmissionWorkflow whose collaborators are the HTTP endpoints,
so the duplicate check, generation and insert happen as separate calls, the
same way a browser front end drives them.
"""

from __future__ import annotations

import logging
from datetime import datetime

import httpx

from app.models.reflection import ReflectionEntry
from app.services.entries import InsertResult
from app.services.reflection import HttpReflectionGenerator
from app.services.workflow import MirrorContext, SubmissionWorkflow, UserIdentity

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "unique_violation"


class MirrorAPIError(Exception):
    """Non-success response from the API."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        detail = response.json().get("detail", response.text)
    except ValueError:
        detail = response.text
    raise MirrorAPIError(response.status_code, str(detail))


def _entry_from_json(data: dict) -> ReflectionEntry:
    return ReflectionEntry(
        id=data["id"],
        owner_id=data["owner_id"],
        content=data["content"],
        reflection=data["reflection"],
        created_at=datetime.fromisoformat(data["created_at"]),
    )


class MirrorClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self.refresh_token: str | None = None

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    async def __aenter__(self) -> MirrorClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    # ── auth ─────────────────────────────────────────────────────

    async def signup(self, email: str, password: str, display_name: str = "") -> None:
        response = await self._http.post(
            "/api/auth/signup",
            json={"email": email, "password": password, "display_name": display_name},
        )
        _raise_for_status(response)
        self.refresh_token = response.json()["refresh_token"]

    async def login(self, email: str, password: str) -> None:
        response = await self._http.post(
            "/api/auth/login", json={"email": email, "password": password}
        )
        _raise_for_status(response)
        self.refresh_token = response.json()["refresh_token"]

    async def refresh(self) -> None:
        if self.refresh_token is None:
            raise MirrorAPIError(401, "Not signed in")
        response = await self._http.post(
            "/api/auth/refresh", json={"refresh_token": self.refresh_token}
        )
        _raise_for_status(response)
        self.refresh_token = response.json()["refresh_token"]

    async def logout(self) -> None:
        response = await self._http.post("/api/auth/logout")
        _raise_for_status(response)
        self.refresh_token = None
        self._http.cookies.clear()

    async def me(self) -> UserIdentity | None:
        """Current user, or None when the session is missing or expired."""
        response = await self._http.get("/api/auth/me")
        if response.status_code in (401, 403):
            return None
        _raise_for_status(response)
        data = response.json()
        return UserIdentity(id=data["id"], email=data["email"])

    # ── entries ──────────────────────────────────────────────────

    async def list_entries(
        self, content: str | None = None, limit: int | None = None
    ) -> list[ReflectionEntry]:
        params: dict[str, str | int] = {}
        if content is not None:
            params["content"] = content
        if limit is not None:
            params["limit"] = limit
        response = await self._http.get("/api/mirror/entries", params=params)
        _raise_for_status(response)
        return [_entry_from_json(item) for item in response.json()]

    async def find_entry(self, content: str) -> bool:
        return bool(await self.list_entries(content=content, limit=1))

    async def create_entry(self, content: str, reflection: str) -> InsertResult:
        try:
            response = await self._http.post(
                "/api/mirror/entries", json={"content": content, "reflection": reflection}
            )
        except httpx.HTTPError as exc:
            return InsertResult.failed(f"request failed: {exc}")
        if response.status_code == 409:
            try:
                code = response.json().get("code")
            except ValueError:
                code = None
            if code == UNIQUE_VIOLATION:
                return InsertResult.duplicate()
        if not response.is_success:
            return InsertResult.failed(f"HTTP {response.status_code}")
        return InsertResult.inserted(_entry_from_json(response.json()))

    async def generate(self, content: str) -> str:
        return await HttpReflectionGenerator(self._http).generate(content)

    async def submit(self, content: str) -> dict:
        """Run a submission server-side. Returns the response body for any outcome."""
        response = await self._http.post("/api/mirror/submit", json={"content": content})
        body = response.json()
        if "outcome" not in body:
            # rejected before reaching the workflow (e.g. no session)
            _raise_for_status(response)
        return body

    # ── client-side workflow ─────────────────────────────────────

    def workflow(self, generation_timeout: float | None = None) -> SubmissionWorkflow:
        return SubmissionWorkflow(
            MirrorContext(
                session_store=HttpSessionStore(self),
                repository=HttpEntryRepository(self),
                generator=HttpReflectionGenerator(self._http),
                generation_timeout=generation_timeout,
            )
        )


class HttpSessionStore:
    def __init__(self, client: MirrorClient) -> None:
        self._client = client

    async def get_current_user(self) -> UserIdentity | None:
        return await self._client.me()


class HttpEntryRepository:
    def __init__(self, client: MirrorClient) -> None:
        self._client = client

    async def exists(self, owner_id: str, content: str) -> bool:
        # owner is implied by the session cookie
        return await self._client.find_entry(content)

    async def insert(self, owner_id: str, content: str, reflection: str) -> InsertResult:
        return await self._client.create_entry(content, reflection)

    async def list_for_owner(self, owner_id: str) -> list[ReflectionEntry]:
        return await self._client.list_entries()
