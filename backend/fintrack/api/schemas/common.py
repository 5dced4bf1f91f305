from pydantic import BaseModel
from typing import Optional, TypeVar, Generic

T = TypeVar('T')


class SuccessResponse(BaseModel, Generic[T]):
    """Standard success response"""
    success: bool = True
    message: str = "Operation completed successfully"
    data: Optional[T] = None


class ErrorResponse(BaseModel):
    """Shape of every error body the exception handlers produce"""
    success: bool = False
    message: str
    code: Optional[str] = None
    status_code: int
    path: str

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "message": "Invalid username/email or password",
                "code": "INVALID_CREDENTIALS",
                "status_code": 401,
                "path": "/api/v1/auth/login"
            }
        }


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = "healthy"
    service: str = "fintrack-api"
    version: str = "0.1.0"
    timestamp: str
    database: str = "connected"
    tenant_strategy: str

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "service": "fintrack-api",
                "version": "0.1.0",
                "timestamp": "2024-01-01T12:00:00Z",
                "database": "connected",
                "tenant_strategy": "per_tenant"
            }
        }
