from fastapi import APIRouter
from datetime import datetime, timezone

from ..schemas import HealthResponse, SuccessResponse
from ...core.config import settings
from ...services.service_coordinator import get_service_coordinator

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    coordinator = get_service_coordinator()
    database_status = "connected" if await coordinator.credential_store.ping() else "disconnected"

    return HealthResponse(
        status="healthy" if database_status == "connected" else "unhealthy",
        service="fintrack-api",
        version=settings.VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        database=database_status,
        tenant_strategy=coordinator.tenant_store.strategy
    )


@router.get("/version", response_model=SuccessResponse[dict])
async def get_version():
    """Get API version information"""
    return SuccessResponse(
        message="Version information",
        data={
            "service": "fintrack-api",
            "version": settings.VERSION,
            "app_name": settings.APP_NAME,
            "debug": settings.DEBUG
        }
    )
