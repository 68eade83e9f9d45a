"""Reflection generation endpoint used by clients that run the workflow themselves."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import AuthSession, get_reflection_generator, require_auth
from app.models.reflection import GenerateRequest, GenerateResponse
from app.services.reflection import GenerationError
from app.services.workflow import ReflectionGenerator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])


@router.post("/mirror", response_model=GenerateResponse)
async def generate_reflection(
    body: GenerateRequest,
    auth: AuthSession = Depends(require_auth),
    generator: ReflectionGenerator = Depends(get_reflection_generator),
) -> GenerateResponse:
    """Generate a reflection for the given content. Nothing is stored."""
    content = body.content.strip()
    if not content:
        raise HTTPException(status_code=422, detail="Content must not be empty")

    try:
        reflection = await generator.generate(content)
    except GenerationError:
        logger.warning("Reflection generation failed for user %s", auth.user_id, exc_info=True)
        raise HTTPException(status_code=503, detail="Reflection generation unavailable")
    return GenerateResponse(reflection=reflection)
