from .common import (
    SuccessResponse,
    ErrorResponse,
    HealthResponse
)

__all__ = [
    "SuccessResponse",
    "ErrorResponse",
    "HealthResponse"
]
