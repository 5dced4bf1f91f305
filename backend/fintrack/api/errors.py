from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import logging

from ..services.auth_exceptions import AuthException, RateLimited, WeakCredential

logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with structured error response"""
    logger.warning(f"HTTP {exc.status_code}: {exc.detail} - {request.url.path}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "status_code": exc.status_code,
            "path": str(request.url.path)
        },
        headers=getattr(exc, "headers", None)
    )


async def auth_exception_handler(request: Request, exc: AuthException):
    """Map identity errors to their public code; the internal reason only goes to the log"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"{type(exc).__name__} ({exc.code}): {exc} - {request.url.path}")

    content = {
        "success": False,
        "message": exc.public_message,
        "code": exc.code,
        "status_code": exc.status_code,
        "path": str(request.url.path)
    }
    if isinstance(exc, WeakCredential):
        content["errors"] = exc.errors

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with detailed error information"""
    logger.warning(f"Validation error on {request.url.path}: {len(exc.errors())} errors")

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "status_code": 422,
            "errors": [
                {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
                for error in exc.errors()
            ],
            "path": str(request.url.path)
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unexpected error: {str(exc)} - {request.url.path}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "status_code": 500,
            "path": str(request.url.path)
        }
    )
