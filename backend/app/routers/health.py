from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, text

from app.db import get_session

router = APIRouter(prefix="/api", tags=["health"])

SERVICE_NAME = "mirror-backend"
VERSION = "0.1.0"


@router.get("/health")
async def health(request: Request, session: Session = Depends(get_session)):
    db_status = "ok"
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        db_status = f"error: {exc}"

    llm_status: dict = {"ollama": "unknown", "fallback": "not_configured"}
    llm_service = getattr(request.app.state, "llm_service", None)
    if llm_service is not None:
        ollama_ok = await llm_service.check_health()
        llm_status["ollama"] = "ok" if ollama_ok else "unreachable"
        llm_status["ollama_healthy_flag"] = llm_service.ollama_healthy
        if llm_service.has_fallback:
            fallback_ok = await llm_service.check_fallback_health()
            llm_status["fallback"] = "ok" if fallback_ok else "unreachable"

    # Reflections degrade without an LLM but the service itself stays up
    return {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "checks": {
            "database": db_status,
            "llm": llm_status,
        },
    }


@router.get("/health/ready")
async def readiness(session: Session = Depends(get_session)):
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not ready",
                "service": SERVICE_NAME,
                "error": str(exc),
            },
        )

    return {
        "status": "ready",
        "service": SERVICE_NAME,
    }
