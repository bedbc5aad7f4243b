"""Health check endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from gitdrive.api.deps import get_settings
from gitdrive.config import Settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    repository: str
    credential: str


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    settings: Annotated[Settings, Depends(get_settings)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    configured = bool(settings.repo_owner and settings.repo_name)
    return HealthResponse(
        status="ok" if configured else "degraded",
        version="0.1.0",
        repository=f"{settings.repo_owner}/{settings.repo_name}" if configured else "unconfigured",
        credential="configured" if settings.github_token else "per-request",
    )
