from fastapi import APIRouter

from .routes import auth_router, health_router, user_router
from ..core.config import settings

# Create main API router
api_router = APIRouter(prefix=settings.API_V1_STR)

api_router.include_router(health_router)
api_router.include_router(auth_router)
api_router.include_router(user_router)
