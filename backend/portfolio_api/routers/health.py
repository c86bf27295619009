from fastapi import APIRouter, Depends

from portfolio_api.core.settings import Settings
from portfolio_api.dependencies import get_settings
from portfolio_api.lib.responses import utc_timestamp

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_root(settings: Settings = Depends(get_settings)):
    return {
        "success": True,
        "message": "Server is running",
        "timestamp": utc_timestamp(),
        "environment": settings.environment,
    }
