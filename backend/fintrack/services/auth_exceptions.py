"""
Custom exceptions for authentication and tenant isolation

Every error carries a stable ``code`` and ``status_code`` used by the API
error handler, and a ``public_message`` that is safe to show to clients.
The exception's own message is for logs only.
"""
from datetime import datetime
from typing import List, Optional


class AuthException(Exception):
    """Base exception for the identity subsystem"""
    code = "AUTH_ERROR"
    status_code = 400
    public_message = "Authentication error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)


class AlreadyExists(AuthException):
    """Raised when a username or email is already registered"""
    code = "USER_ALREADY_EXISTS"
    status_code = 409
    public_message = "User with this email or username already exists"


class WeakCredential(AuthException):
    """Raised when a password fails the strength policy"""
    code = "WEAK_PASSWORD"
    status_code = 400
    public_message = "Password does not meet requirements"

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class InvalidCredentials(AuthException):
    """Raised when the identifier or password is wrong"""
    code = "INVALID_CREDENTIALS"
    status_code = 401
    public_message = "Invalid username/email or password"


class AccountLocked(AuthException):
    """Raised while an account is inside its lockout window"""
    code = InvalidCredentials.code
    status_code = InvalidCredentials.status_code
    public_message = InvalidCredentials.public_message

    def __init__(self, locked_until: Optional[datetime] = None):
        super().__init__(f"Account locked until {locked_until.isoformat() if locked_until else 'unknown'}")
        self.locked_until = locked_until


class TokenRequired(AuthException):
    """Raised when a protected request carries no bearer token"""
    code = "TOKEN_REQUIRED"
    status_code = 401
    public_message = "Access token required"


class TokenExpired(AuthException):
    """Raised when a token's expiry has passed"""
    code = "TOKEN_EXPIRED"
    status_code = 401
    public_message = "Token expired"


class TokenInvalid(AuthException):
    """Raised for bad signatures, foreign audiences and revoked tokens"""
    code = "TOKEN_INVALID"
    status_code = 401
    public_message = "Invalid token"


class TokenMalformed(TokenInvalid):
    """Raised when a token cannot be decoded at all"""
    pass


class InvalidRefreshToken(AuthException):
    """Raised when a refresh token is unknown, already rotated or expired"""
    code = "INVALID_REFRESH_TOKEN"
    status_code = 401
    public_message = "Invalid or expired refresh token"


class AlreadyLinkedElsewhere(AuthException):
    """Raised when an external account belongs to another user"""
    code = "GOOGLE_ACCOUNT_ALREADY_LINKED"
    status_code = 409
    public_message = "This Google account is already linked to another user"


class ProvisioningFailed(AuthException):
    """Raised when a tenant resource cannot be created"""
    code = "REGISTRATION_ERROR"
    status_code = 500
    public_message = "Failed to create user account"


class TenantNotFound(AuthException):
    """Raised when a user has no provisioned tenant resource"""
    code = "TENANT_NOT_FOUND"
    status_code = 404
    public_message = "User data store not found"


class PrincipalNotFound(AuthException):
    """Raised when a valid token names a missing or inactive user"""
    code = "USER_NOT_FOUND"
    status_code = 401
    public_message = "User not found or inactive"


class AdminRequired(AuthException):
    """Raised when a non-admin calls an admin endpoint"""
    code = "ADMIN_REQUIRED"
    status_code = 403
    public_message = "Admin access required"


class CredentialRequired(AuthException):
    """Raised when an operation would leave an account without a way to sign in"""
    code = "CREDENTIAL_REQUIRED"
    status_code = 400
    public_message = "A password is required for this operation"


class ExternalAuthFailed(AuthException):
    """Raised when the OAuth provider exchange fails"""
    code = "OAUTH_FAILED"
    status_code = 401
    public_message = "External sign-in failed"


class ExportFailed(AuthException):
    """Raised when a user's data cannot be read back for export"""
    code = "EXPORT_ERROR"
    status_code = 500
    public_message = "Failed to export user data"


class RateLimited(AuthException):
    """Raised when a client address has spent its request budget"""
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    public_message = "Too many requests, please try again later"

    def __init__(self, retry_after: Optional[int] = None):
        super().__init__(f"Rate limited, retry after {retry_after}s" if retry_after else None)
        self.retry_after = retry_after


class LoginRateLimited(RateLimited):
    """Raised after too many failed logins from one address"""
    code = "LOGIN_RATE_LIMIT_EXCEEDED"
    public_message = "Too many login attempts, please try again later"


class TenantPredicateError(RuntimeError):
    """Raised when a shared-store query is missing its user_id predicate"""
    pass
