"""Liveness endpoint."""

from fastapi import APIRouter

from app.core.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Process is up and serving requests."""
    return {"status": "ok", "env": settings.app_env}
