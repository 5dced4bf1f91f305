from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .base import BaseModel


@dataclass
class Principal(BaseModel):
    """A registered user as stored in the credential database"""
    id: str
    username: str
    email: str
    password_hash: Optional[str] = None
    google_id: Optional[str] = None
    profile_picture: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_admin: bool = False
    is_active: bool = True
    email_verified: bool = False
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None
    database_name: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    datetime_fields = ("locked_until", "last_login", "created_at", "updated_at")
    bool_fields = ("is_admin", "is_active", "email_verified")

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)


@dataclass
class SessionRecord(BaseModel):
    """One issued token pair, stored as hashes only"""
    id: str
    user_id: str
    token_hash: str
    refresh_token_hash: str
    expires_at: datetime
    refresh_expires_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    last_used: Optional[datetime] = None

    datetime_fields = ("expires_at", "refresh_expires_at", "created_at", "last_used")
    bool_fields = ("is_active",)


@dataclass
class Registration:
    username: str
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass
class ExternalProfile:
    """Identity returned by an OAuth provider"""
    external_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_picture: Optional[str] = None
    email_verified: bool = False


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    expires_in: int = 0
    token_type: str = "Bearer"


@dataclass
class FailedLoginResult:
    attempts: int
    locked_until: Optional[datetime]
    applied: bool = True


@dataclass
class AuthResult:
    principal: Principal
    tokens: TokenPair
    session_id: str


@dataclass
class RotationResult:
    principal: Principal
    tokens: TokenPair
    session_id: str
