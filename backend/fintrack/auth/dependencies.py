from typing import AsyncIterator, Optional

from fastapi import Depends, Request

from ..services.service_coordinator import get_service_coordinator
from ..services.tenant_store import TenantConnection
from .gate import IdentityContext


def client_address(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def enforce_auth_rate_limit(request: Request):
    """Count the request against its address's budget for the /auth routes"""
    get_service_coordinator().rate_limiter.hit_auth(client_address(request) or "unknown")


async def get_current_identity(request: Request) -> IdentityContext:
    """
    Dependency that validates the bearer token and loads the user.
    Use this on all protected endpoints.
    """
    gate = get_service_coordinator().request_gate
    identity = await gate.authenticate(request.headers.get("Authorization"))
    request.state.identity = identity
    return identity


async def get_optional_identity(request: Request) -> IdentityContext:
    """
    Optional dependency that validates the token if present.
    Returns an anonymous context on any failure.
    """
    gate = get_service_coordinator().request_gate
    identity = await gate.authenticate_optional(request.headers.get("Authorization"))
    request.state.identity = identity
    return identity


async def require_admin(request: Request) -> IdentityContext:
    gate = get_service_coordinator().request_gate
    identity = await gate.authenticate_admin(request.headers.get("Authorization"))
    request.state.identity = identity
    return identity


async def get_tenant_connection(
    identity: IdentityContext = Depends(get_current_identity),
) -> AsyncIterator[TenantConnection]:
    """The caller's finance data connection; data handlers never open their own.

    Writes the handler left uncommitted are rolled back when the request ends.
    """
    connection = await get_service_coordinator().tenant_store.get_connection(identity.user_id)
    try:
        yield connection
    finally:
        await connection.release()
