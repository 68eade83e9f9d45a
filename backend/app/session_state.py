"""In-memory registry of active login sessions.

Each session maps to the user who opened it and, once the user submits
something, to that session's SubmissionWorkflow. The workflow (and with it
the in-flight guard) lives exactly as long as the session: logout, expiry or
server restart drops it.

After a configurable timeout the session is removed automatically. Each
successful lookup refreshes the timer (sliding window).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.services.workflow import SubmissionWorkflow

_timeout_minutes: int | None = None
_lock = threading.Lock()


@dataclass
class SessionEntry:
    user_id: str
    last_activity: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    workflow: SubmissionWorkflow | None = None


_active_sessions: dict[str, SessionEntry] = {}


def configure_timeout(minutes: int) -> None:
    """Set session timeout. Called once at app startup from settings."""
    if minutes <= 0:
        raise ValueError(f"SESSION_TIMEOUT_MINUTES must be > 0, got {minutes}")
    global _timeout_minutes
    _timeout_minutes = minutes


def _is_expired(entry: SessionEntry, now: datetime) -> bool:
    if _timeout_minutes is None:
        return False
    return (now - entry.last_activity).total_seconds() > _timeout_minutes * 60


def open_session(session_id: str, user_id: str) -> None:
    with _lock:
        _active_sessions[session_id] = SessionEntry(user_id=user_id)


def _live_entry(session_id: str) -> SessionEntry | None:
    """Return the entry if it exists and has not expired. Caller holds _lock."""
    entry = _active_sessions.get(session_id)
    if entry is None:
        return None
    now = datetime.now(timezone.utc)
    if _is_expired(entry, now):
        del _active_sessions[session_id]
        return None
    entry.last_activity = now
    return entry


def get_user_id(session_id: str) -> str | None:
    """Return the user owning an active session, or None if closed/expired."""
    with _lock:
        entry = _live_entry(session_id)
        return entry.user_id if entry is not None else None


def get_workflow(session_id: str) -> SubmissionWorkflow | None:
    with _lock:
        entry = _live_entry(session_id)
        return entry.workflow if entry is not None else None


def attach_workflow(session_id: str, workflow: SubmissionWorkflow) -> SubmissionWorkflow:
    """Bind a workflow to a session unless one is already bound.

    Returns the workflow that ends up bound, so concurrent first requests of
    one session share a single in-flight guard.
    """
    with _lock:
        entry = _live_entry(session_id)
        if entry is None:
            raise KeyError(session_id)
        if entry.workflow is None:
            entry.workflow = workflow
        return entry.workflow


def sweep_expired() -> int:
    """Remove all expired sessions. Returns count of removed sessions.

    Called periodically from a background task so idle sessions don't
    linger when nobody looks them up.
    """
    if _timeout_minutes is None:
        return 0
    now = datetime.now(timezone.utc)
    with _lock:
        expired_ids = [
            sid for sid, entry in _active_sessions.items() if _is_expired(entry, now)
        ]
        for sid in expired_ids:
            del _active_sessions[sid]
    return len(expired_ids)


def close_session(session_id: str) -> None:
    with _lock:
        _active_sessions.pop(session_id, None)


def wipe_all() -> None:
    with _lock:
        _active_sessions.clear()
