"""Reflection generators: turn a piece of creative content into a reflection.

Two interchangeable implementations share one contract, ``generate(content)
-> str``, and signal every kind of failure with GenerationError:

- LLMReflectionGenerator calls the LLM in-process (used by the server).
- HttpReflectionGenerator calls ``POST /api/ai/mirror`` (used by clients).
"""

from __future__ import annotations

import logging

import httpx

from app.services.llm import LLMError, LLMService

logger = logging.getLogger(__name__)

MIRROR_SYSTEM_PROMPT = (
    "You are a creativity mirror for a mindfulness journal. The user shares "
    "creative thoughts or work. Reflect it back to them: name what stands out, "
    "the feelings or themes you notice, and one gentle question that invites "
    "them to go deeper. Be warm, specific to what they wrote, and brief "
    "(under 150 words). Do not give advice unless asked. "
    "Return only the reflection."
)

# Keep prompts well inside small local model context windows
MAX_PROMPT_CHARS = 4000


class GenerationError(Exception):
    """The reflection could not be generated (transport, status, or empty output)."""


class LLMReflectionGenerator:
    """Generate reflections with the configured LLMService."""

    def __init__(self, llm: LLMService, temperature: float = 0.8) -> None:
        self._llm = llm
        self._temperature = temperature

    async def generate(self, content: str) -> str:
        try:
            response = await self._llm.generate(
                prompt=content[:MAX_PROMPT_CHARS],
                system=MIRROR_SYSTEM_PROMPT,
                temperature=self._temperature,
            )
        except LLMError as exc:
            raise GenerationError(str(exc)) from exc

        text = response.text.strip()
        if not text:
            raise GenerationError(f"{response.backend} returned an empty reflection")
        logger.debug(
            "Generated reflection via %s (%s, %s ms)",
            response.backend,
            response.model,
            response.total_duration_ms,
        )
        return text


class HttpReflectionGenerator:
    """Generate reflections through the ``/api/ai/mirror`` endpoint.

    Any non-success status is treated uniformly as a failure; the error body
    is not parsed.
    """

    def __init__(self, client: httpx.AsyncClient, path: str = "/api/ai/mirror") -> None:
        self._client = client
        self._path = path

    async def generate(self, content: str) -> str:
        try:
            response = await self._client.post(self._path, json={"content": content})
        except httpx.HTTPError as exc:
            raise GenerationError(f"Reflection request failed: {exc}") from exc

        if not response.is_success:
            raise GenerationError(f"Reflection endpoint returned HTTP {response.status_code}")
        try:
            reflection = response.json()["reflection"]
        except (ValueError, KeyError, TypeError) as exc:
            raise GenerationError(f"Malformed reflection response: {exc}") from exc
        if not isinstance(reflection, str):
            raise GenerationError("Malformed reflection response: reflection is not text")
        return reflection
