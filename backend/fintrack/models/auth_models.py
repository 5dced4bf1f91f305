from pydantic import BaseModel, Field, validator
from typing import Any, Dict, List, Optional
from datetime import datetime
import re

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")


def _check_email(value: str) -> str:
    value = value.strip()
    if not EMAIL_PATTERN.match(value):
        raise ValueError('Please provide a valid email')
    return value.lower()


class UserRegistrationRequest(BaseModel):
    """Request model for user registration"""
    username: str = Field(..., min_length=3, max_length=50, description="Letters, numbers and underscores")
    email: str = Field(..., max_length=255, description="Contact email, unique per account")
    # Strength rules are enforced by the credential store so the client gets every failing rule back
    password: str = Field(..., min_length=1, max_length=128, description="User's password")
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)

    @validator('username')
    def validate_username(cls, v):
        v = v.strip()
        if not USERNAME_PATTERN.match(v):
            raise ValueError('Username can only contain letters, numbers, and underscores')
        return v

    @validator('email')
    def validate_email(cls, v):
        return _check_email(v)

    @validator('first_name', 'last_name')
    def strip_names(cls, v):
        return v.strip() if v else v


class LoginRequest(BaseModel):
    """Request model for user login"""
    username: str = Field(..., min_length=1, max_length=255, description="Username or email")
    password: str = Field(..., min_length=1, max_length=128)
    remember_me: bool = Field(False, description="Deliver the refresh token as an http-only cookie")

    @validator('username')
    def validate_username(cls, v):
        return v.strip()


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(None, description="Omit to use the refresh cookie")


class LogoutRequest(BaseModel):
    session_id: Optional[str] = Field(None, description="Session to end; defaults to the current one")
    all_sessions: bool = False


class ChangePasswordRequest(BaseModel):
    """Request model for changing password"""
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=1, max_length=128)


class GoogleLinkRequest(BaseModel):
    google_id: str = Field(..., min_length=1, max_length=255)
    profile_picture: Optional[str] = Field(None, max_length=2048)


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255)

    @validator('email')
    def validate_email(cls, v):
        return _check_email(v) if v is not None else v


class SettingsUpdateRequest(BaseModel):
    settings: Dict[str, str] = Field(..., description="Setting key to value")

    @validator('settings')
    def validate_keys(cls, v):
        for key in v:
            if not key or len(key) > 100:
                raise ValueError('Setting keys must be 1-100 characters')
        return v


class DeleteAccountRequest(BaseModel):
    password: Optional[str] = Field(None, max_length=128, description="Required for password accounts")
    confirmation: str = Field(..., description="Must be the text DELETE")

    @validator('confirmation')
    def validate_confirmation(cls, v):
        if v != "DELETE":
            raise ValueError('Confirmation text must be "DELETE"')
        return v


class UserResponse(BaseModel):
    """Response model for user information"""
    id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_picture: Optional[str] = None
    is_admin: bool = False
    email_verified: bool = False
    has_password: bool = True
    google_linked: bool = False
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_principal(cls, principal) -> "UserResponse":
        return cls(
            id=principal.id,
            username=principal.username,
            email=principal.email,
            first_name=principal.first_name,
            last_name=principal.last_name,
            profile_picture=principal.profile_picture,
            is_admin=principal.is_admin,
            email_verified=principal.email_verified,
            has_password=principal.has_password,
            google_linked=principal.google_id is not None,
            created_at=principal.created_at,
            last_login=principal.last_login,
        )


class RegistrationResponse(BaseModel):
    """Response model for successful registration"""
    success: bool = True
    message: str = "User registered successfully"
    user: UserResponse


class TokenResponse(BaseModel):
    success: bool = True
    access_token: str
    refresh_token: Optional[str] = Field(None, description="Absent when delivered as a cookie")
    token_type: str = "Bearer"
    expires_in: int
    session_id: str


class LoginResponse(TokenResponse):
    """Response model for successful login"""
    message: str = "Login successful"
    user: UserResponse


class SessionInfo(BaseModel):
    """Response model for an active session"""
    id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    last_used: Optional[datetime] = None
    expires_at: datetime
    refresh_expires_at: datetime
    current: bool = False


class CategoryResponse(BaseModel):
    id: str
    name: str
    color: str
    type: str
    is_default: bool


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class SessionCleanupResponse(MessageResponse):
    deleted: int


class AuthStatusResponse(BaseModel):
    authenticated: bool
    user: Optional[UserResponse] = None


class ExportedUser(BaseModel):
    id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: Optional[datetime] = None


class DataExport(BaseModel):
    """Everything a user owns, in one document they can download"""
    version: str = "1.0"
    export_date: datetime
    user: ExportedUser
    transactions: List[Dict[str, Any]]
    categories: List[Dict[str, Any]]
    settings: Dict[str, Optional[str]]
