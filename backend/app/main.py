from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import app.models  # noqa: F401  register SQLModel tables

from app import session_state
from app.config import get_settings
from app.db import create_db_and_tables
from app.routers import ai, auth, health, mirror
from app.services.llm import LLMService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.db_url.startswith("sqlite:///"):
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    create_db_and_tables()

    session_state.configure_timeout(settings.session_timeout_minutes)

    app.state.llm_service = LLMService(
        ollama_url=settings.ollama_url,
        model=settings.llm_model,
        timeout=settings.llm_timeout_seconds,
        fallback_url=settings.fallback_llm_url,
        fallback_api_key=settings.fallback_llm_api_key,
        fallback_model=settings.fallback_llm_model,
    )

    # Periodic sweep of expired sessions (and their workflows)
    async def _session_sweep_loop() -> None:
        while True:
            await asyncio.sleep(60)
            try:
                removed = session_state.sweep_expired()
                if removed:
                    logger.info("Session sweep: removed %d expired session(s)", removed)
            except Exception:
                logger.exception("Session sweep error")

    sweep_task = asyncio.create_task(_session_sweep_loop())

    yield

    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass
    session_state.wipe_all()


app = FastAPI(
    title="Creativity Mirror",
    description="Mindfulness journal with AI-generated reflections",
    version="0.1.0",
    lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        f"https://{settings.domain}",
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(health.router)
app.include_router(mirror.router)
app.include_router(ai.router)
