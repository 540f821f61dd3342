"""
Health check endpoint

GET /health - server status
"""

from fastapi import APIRouter, Depends

from core.config.loader import Settings
from web.dependencies import get_app_settings
from web.models.responses import HealthResponse

API_VERSION = "1.0.0"

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    """Server status

    Returns:
        HealthResponse: status, mode, version
    """
    return HealthResponse(
        status="ok",
        mode=settings.mode.value,
        version=API_VERSION,
    )
