"""LLM access: Ollama first, optional OpenAI-compatible fallback.

Everything that talks to a language model goes through LLMService. When a
fallback endpoint is configured and Ollama fails, requests are routed to the
fallback; Ollama is re-tried after a cooldown so traffic returns to the
primary when it recovers.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when LLM generation fails on ALL backends."""


@dataclass(frozen=True, slots=True)
class LLMResponse:
    """Result from an LLM generation call."""

    text: str
    model: str
    total_duration_ms: int | None
    backend: str  # "ollama" or "fallback"


class LLMService:
    # How long (seconds) to skip Ollama after a failure
    _HEALTH_RECHECK_INTERVAL = 60

    __slots__ = (
        "ollama_url",
        "model",
        "_timeout",
        "_fallback_url",
        "_fallback_api_key",
        "_fallback_model",
        "_ollama_healthy",
        "_last_ollama_fail_time",
    )

    def __init__(
        self,
        ollama_url: str,
        model: str = "llama3.2",
        timeout: float = 120.0,
        fallback_url: str = "",
        fallback_api_key: str = "",
        fallback_model: str = "",
    ) -> None:
        self.ollama_url = ollama_url.rstrip("/")
        self.model = model
        self._timeout = timeout
        self._fallback_url = fallback_url.rstrip("/") if fallback_url else ""
        self._fallback_api_key = fallback_api_key
        self._fallback_model = fallback_model or model
        self._ollama_healthy: bool = True
        self._last_ollama_fail_time: float = 0.0

    @property
    def has_fallback(self) -> bool:
        return bool(self._fallback_url)

    @property
    def ollama_healthy(self) -> bool:
        return self._ollama_healthy

    def _should_try_ollama(self) -> bool:
        if self._ollama_healthy:
            return True
        elapsed = time.monotonic() - self._last_ollama_fail_time
        if elapsed >= self._HEALTH_RECHECK_INTERVAL:
            logger.info("Re-checking Ollama after %.0fs cooldown", elapsed)
            return True
        return False

    def _mark_ollama_down(self) -> None:
        self._ollama_healthy = False
        self._last_ollama_fail_time = time.monotonic()
        logger.warning(
            "Ollama marked as unhealthy, will retry after %ds",
            self._HEALTH_RECHECK_INTERVAL,
        )

    def _mark_ollama_up(self) -> None:
        if not self._ollama_healthy:
            logger.info("Ollama is healthy again, resuming primary routing")
        self._ollama_healthy = True

    async def generate(
        self,
        prompt: str,
        system: str | None = None,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Generate a complete response, falling back when Ollama fails."""
        if self._should_try_ollama():
            try:
                result = await self._generate_ollama(prompt, system, temperature)
                self._mark_ollama_up()
                return result
            except LLMError:
                self._mark_ollama_down()
                if not self.has_fallback:
                    raise

        if self.has_fallback:
            logger.info("Falling back to cloud LLM for generate")
            return await self._generate_openai(prompt, system, temperature)

        raise LLMError("Ollama is unavailable and no fallback is configured")

    async def _post_json(
        self, label: str, url: str, payload: dict, headers: dict | None = None
    ) -> dict:
        """POST a JSON body and return the decoded reply, mapping transport errors to LLMError."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.ConnectError as exc:
            raise LLMError(f"Cannot connect to {label} at {url}: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise LLMError(f"{label} returned HTTP {exc.response.status_code}: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise LLMError(f"{label} request timed out after {self._timeout}s: {exc}") from exc
        except ValueError as exc:
            raise LLMError(f"{label} returned a non-JSON body: {exc}") from exc

    async def _generate_ollama(
        self, prompt: str, system: str | None, temperature: float
    ) -> LLMResponse:
        payload: dict = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature},
        }
        if system is not None:
            payload["system"] = system

        data = await self._post_json("Ollama", f"{self.ollama_url}/api/generate", payload)
        try:
            text = data["response"]
        except (KeyError, TypeError) as exc:
            raise LLMError(f"Unexpected response from Ollama: {exc}") from exc
        duration = data.get("total_duration")
        return LLMResponse(
            text=text,
            model=data.get("model", self.model),
            total_duration_ms=duration // 1_000_000 if duration else None,
            backend="ollama",
        )

    async def _generate_openai(
        self, prompt: str, system: str | None, temperature: float
    ) -> LLMResponse:
        messages: list[dict] = []
        if system is not None:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        data = await self._post_json(
            "Fallback LLM",
            f"{self._fallback_url}/chat/completions",
            {
                "model": self._fallback_model,
                "messages": messages,
                "temperature": temperature,
                "stream": False,
            },
            headers={"Authorization": f"Bearer {self._fallback_api_key}"},
        )
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMError(f"Unexpected response from fallback LLM: {exc}") from exc
        return LLMResponse(
            text=text,
            model=data.get("model", self._fallback_model),
            total_duration_ms=None,
            backend="fallback",
        )

    async def check_health(self) -> bool:
        """True if Ollama answers /api/tags."""
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(f"{self.ollama_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def check_fallback_health(self) -> bool:
        """True if the fallback endpoint answers /models."""
        if not self.has_fallback:
            return False
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(
                    f"{self._fallback_url}/models",
                    headers={"Authorization": f"Bearer {self._fallback_api_key}"},
                )
                return response.status_code == 200
        except httpx.HTTPError:
            return False
