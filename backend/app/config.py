from __future__ import annotations

import warnings
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    domain: str = "localhost"
    jwt_secret: str = ""  # HS256 signing secret for access/refresh tokens
    allow_insecure_jwt: bool = False

    @model_validator(mode="after")
    def _check_jwt_secret(self) -> Settings:
        self.jwt_secret = self.jwt_secret.strip()
        if not self.jwt_secret:
            if self.allow_insecure_jwt:
                warnings.warn(
                    "JWT_SECRET is empty but ALLOW_INSECURE_JWT is set; "
                    "session tokens can be forged. Development use only.",
                    stacklevel=2,
                )
            else:
                raise ValueError(
                    "JWT_SECRET is not set. An empty JWT secret allows attackers to "
                    "forge session tokens. Set JWT_SECRET in .env or set "
                    "ALLOW_INSECURE_JWT=1 for development."
                )
        return self

    jwt_access_token_expire_minutes: int = 60
    jwt_refresh_token_expire_days: int = 7
    session_timeout_minutes: int = 60 * 24
    cookie_secure: bool = False  # set True behind HTTPS
    data_dir: Path = Path("/app/data")
    db_url: str = "sqlite:////app/data/mirror.db"

    ollama_url: str = "http://ollama:11434"
    llm_model: str = "llama3.2"
    llm_timeout_seconds: float = 120.0
    # Optional cloud LLM fallback (OpenAI-compatible endpoint)
    fallback_llm_url: str = ""        # e.g. "https://api.openai.com/v1"
    fallback_llm_api_key: str = ""
    fallback_llm_model: str = ""      # if empty, uses llm_model value
    # Upper bound on one reflection generation inside a submission; 0 disables
    generation_timeout_seconds: float = 90.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
