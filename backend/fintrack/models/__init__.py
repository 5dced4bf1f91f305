from .principal import (
    Principal,
    SessionRecord,
    Registration,
    ExternalProfile,
    TokenPair,
    FailedLoginResult,
    AuthResult,
    RotationResult,
)

__all__ = [
    "Principal",
    "SessionRecord",
    "Registration",
    "ExternalProfile",
    "TokenPair",
    "FailedLoginResult",
    "AuthResult",
    "RotationResult",
]
