from __future__ import annotations

from fastapi import APIRouter, Depends

from reelsync.api import deps
from reelsync.core.config import Settings

from .schemas import HealthResponse


router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse, summary="Liveness probe")
async def health(settings: Settings = Depends(deps.get_app_settings)) -> HealthResponse:
    return HealthResponse(version=settings.version)


__all__ = ["router"]
