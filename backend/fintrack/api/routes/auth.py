import logging
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse

from ..schemas import ErrorResponse
from ...auth.dependencies import (
    client_address,
    enforce_auth_rate_limit,
    get_current_identity,
    get_optional_identity,
    require_admin,
)
from ...auth.gate import IdentityContext
from ...core.config import settings
from ...models.auth_models import (
    AuthStatusResponse,
    ChangePasswordRequest,
    GoogleLinkRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RegistrationResponse,
    SessionCleanupResponse,
    SessionInfo,
    TokenResponse,
    UserRegistrationRequest,
    UserResponse,
)
from ...models.principal import Registration
from ...services.auth_exceptions import AccountLocked, ExternalAuthFailed, InvalidCredentials, InvalidRefreshToken
from ...services.service_coordinator import get_auth_service, get_service_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
    responses={401: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[Depends(enforce_auth_rate_limit)],
)


def set_refresh_cookie(response: Response, refresh_token: str, expires_at: datetime):
    max_age = int((expires_at - datetime.now(timezone.utc)).total_seconds())
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=max(max_age, 0),
        httponly=True,
        secure=settings.REFRESH_COOKIE_SECURE,
        samesite="strict",
        path=f"{settings.API_V1_STR}/auth",
    )


def clear_refresh_cookie(response: Response):
    response.delete_cookie(key=settings.REFRESH_COOKIE_NAME, path=f"{settings.API_V1_STR}/auth")


@router.post("/register", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_user(payload: UserRegistrationRequest):
    """Register a new user account"""
    principal = await get_auth_service().register(Registration(
        username=payload.username,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
    ))
    return RegistrationResponse(user=UserResponse.from_principal(principal))


@router.post("/login", response_model=LoginResponse)
async def login_user(payload: LoginRequest, request: Request, response: Response):
    """Login with username or email and password"""
    address = client_address(request)
    rate_limiter = get_service_coordinator().rate_limiter
    rate_limiter.check_login(address or "unknown")
    try:
        result = await get_auth_service().authenticate(
            payload.username,
            payload.password,
            client_address=address,
            user_agent=request.headers.get("user-agent"),
        )
    except (InvalidCredentials, AccountLocked):
        rate_limiter.record_failed_login(address or "unknown")
        raise

    refresh_token = result.tokens.refresh_token
    if payload.remember_me:
        set_refresh_cookie(response, refresh_token, result.tokens.refresh_expires_at)
        refresh_token = None

    return LoginResponse(
        user=UserResponse.from_principal(result.principal),
        access_token=result.tokens.access_token,
        refresh_token=refresh_token,
        expires_in=result.tokens.expires_in,
        session_id=result.session_id,
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh_tokens(request: Request, response: Response, payload: Optional[RefreshRequest] = None):
    """Exchange a refresh token (body or cookie) for a new token pair"""
    body_token = payload.refresh_token if payload else None
    token = body_token or request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if not token:
        raise InvalidRefreshToken("No refresh token in body or cookie")

    result = await get_auth_service().refresh(token)

    refresh_token = result.tokens.refresh_token
    if not body_token:
        set_refresh_cookie(response, refresh_token, result.tokens.refresh_expires_at)
        refresh_token = None

    return TokenResponse(
        access_token=result.tokens.access_token,
        refresh_token=refresh_token,
        expires_in=result.tokens.expires_in,
        session_id=result.session_id,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout_user(
    response: Response,
    payload: Optional[LogoutRequest] = None,
    identity: IdentityContext = Depends(get_current_identity),
):
    """End the current session, a named session, or every session"""
    payload = payload or LogoutRequest()
    session_id = None if payload.all_sessions else (payload.session_id or identity.session_id)
    await get_auth_service().logout(identity.user_id, session_id)
    clear_refresh_cookie(response)
    return MessageResponse(message="Logout successful")


@router.get("/me", response_model=UserResponse)
async def get_me(identity: IdentityContext = Depends(get_current_identity)):
    return UserResponse.from_principal(identity.principal)


@router.get("/status", response_model=AuthStatusResponse)
async def auth_status(identity: IdentityContext = Depends(get_optional_identity)):
    """Report whether the request carries a usable access token"""
    if identity.is_anonymous:
        return AuthStatusResponse(authenticated=False)
    return AuthStatusResponse(authenticated=True, user=UserResponse.from_principal(identity.principal))


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    payload: ChangePasswordRequest,
    response: Response,
    identity: IdentityContext = Depends(get_current_identity),
):
    """Change password; every session is signed out"""
    await get_auth_service().change_password(identity.user_id, payload.current_password, payload.new_password)
    clear_refresh_cookie(response)
    return MessageResponse(message="Password changed successfully. Please log in again.")


@router.get("/sessions", response_model=List[SessionInfo])
async def list_sessions(identity: IdentityContext = Depends(get_current_identity)):
    sessions = await get_service_coordinator().session_ledger.list_active(identity.user_id)
    return [
        SessionInfo(
            id=s.id,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            created_at=s.created_at,
            last_used=s.last_used,
            expires_at=s.expires_at,
            refresh_expires_at=s.refresh_expires_at,
            current=s.id == identity.session_id,
        )
        for s in sessions
    ]


@router.post("/cleanup-sessions", response_model=SessionCleanupResponse)
async def cleanup_sessions(identity: IdentityContext = Depends(require_admin)):
    """Delete expired sessions (admin only)"""
    deleted = await get_auth_service().cleanup_expired_sessions()
    logger.info(f"Admin {identity.user_id} swept {deleted} expired sessions")
    return SessionCleanupResponse(message="Expired sessions cleaned up", deleted=deleted)


# Google OAuth

@router.get("/google")
async def google_login():
    """Redirect to Google's consent screen"""
    oauth_client = get_service_coordinator().oauth_client
    if oauth_client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Google sign-in is not configured")
    return RedirectResponse(oauth_client.authorization_url(), status_code=status.HTTP_302_FOUND)


@router.get("/google/callback")
async def google_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    """Finish Google sign-in and hand the access token to the frontend"""
    coordinator = get_service_coordinator()
    if coordinator.oauth_client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Google sign-in is not configured")

    failure_url = f"{settings.FRONTEND_URL}/login?{urlencode({'error': 'oauth_failed'})}"
    if error or not code:
        logger.warning(f"Google sign-in aborted: {error or 'no code'}")
        return RedirectResponse(failure_url, status_code=status.HTTP_302_FOUND)

    try:
        profile = await coordinator.oauth_client.exchange_code(code, state)
    except ExternalAuthFailed as e:
        logger.warning(f"Google sign-in failed: {e}")
        return RedirectResponse(failure_url, status_code=status.HTTP_302_FOUND)

    auth_service = coordinator.auth_service
    principal = await auth_service.authenticate_or_create_from_external(profile)
    result = await auth_service.start_session(
        principal,
        client_address=client_address(request),
        user_agent=request.headers.get("user-agent"),
    )

    # Fragment, not query string, so the token never reaches server logs
    fragment = urlencode({
        "access_token": result.tokens.access_token,
        "expires_in": result.tokens.expires_in,
        "session_id": result.session_id,
    })
    redirect = RedirectResponse(f"{settings.FRONTEND_URL}/auth/callback#{fragment}", status_code=status.HTTP_302_FOUND)
    set_refresh_cookie(redirect, result.tokens.refresh_token, result.tokens.refresh_expires_at)
    return redirect


@router.post("/google/link", response_model=UserResponse)
async def link_google_account(payload: GoogleLinkRequest, identity: IdentityContext = Depends(get_current_identity)):
    principal = await get_auth_service().link_external_account(
        identity.user_id, payload.google_id, payload.profile_picture
    )
    return UserResponse.from_principal(principal)


@router.post("/google/unlink", response_model=UserResponse)
async def unlink_google_account(identity: IdentityContext = Depends(get_current_identity)):
    principal = await get_auth_service().unlink_external_account(identity.user_id)
    return UserResponse.from_principal(principal)
