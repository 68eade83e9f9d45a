from __future__ import annotations

from app.models.auth import RefreshToken, User  # noqa: F401
from app.models.reflection import ReflectionEntry  # noqa: F401
