"""
JWT access and refresh token issuing and verification.

Handles:
- Access tokens carrying the user id, username and email
- Refresh tokens marked with ``type=refresh`` and a longer expiry
- Verification of signature, expiry, issuer, audience and token type
"""
import hashlib
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt

from ..core.clock import Clock, utcnow
from ..models.principal import Principal, TokenPair
from .auth_exceptions import TokenExpired, TokenInvalid, TokenMalformed

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "sub", "type", "jti"]


def hash_token(token: str) -> str:
    """One-way digest stored in the session ledger instead of the raw token"""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


class TokenCodec:
    """Signs and verifies access/refresh token pairs"""

    def __init__(
        self,
        secret: str,
        refresh_secret: Optional[str] = None,
        algorithm: str = "HS256",
        issuer: str = "finance-tracker",
        audience: str = "finance-tracker-users",
        access_ttl: timedelta = timedelta(hours=24),
        refresh_ttl: timedelta = timedelta(days=30),
        clock: Clock = utcnow,
    ):
        if not secret:
            raise ValueError("JWT_SECRET must be configured")
        self.secret = secret
        self.refresh_secret = refresh_secret or secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.clock = clock

    def issue_token_pair(self, principal: Principal) -> TokenPair:
        """Create a fresh access/refresh pair for a principal"""
        now = self.clock()
        access_expires_at = now + self.access_ttl
        refresh_expires_at = now + self.refresh_ttl

        access_payload = {
            "sub": principal.id,
            "username": principal.username,
            "email": principal.email,
            "type": ACCESS_TOKEN_TYPE,
            "jti": str(uuid.uuid4()),
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": access_expires_at,
        }
        refresh_payload = {
            "sub": principal.id,
            "type": REFRESH_TOKEN_TYPE,
            "jti": str(uuid.uuid4()),
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": refresh_expires_at,
        }

        return TokenPair(
            access_token=jwt.encode(access_payload, self.secret, algorithm=self.algorithm),
            refresh_token=jwt.encode(refresh_payload, self.refresh_secret, algorithm=self.algorithm),
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
            expires_in=int(self.access_ttl.total_seconds()),
        )

    def verify(
        self,
        token: str,
        expected_audience: Optional[str] = None,
        expected_issuer: Optional[str] = None,
        token_type: str = ACCESS_TOKEN_TYPE,
    ) -> Dict[str, Any]:
        """Decode a token and return its claims.

        Raises:
            TokenExpired: the ``exp`` claim has passed
            TokenMalformed: the token is not a decodable JWT
            TokenInvalid: bad signature, wrong audience/issuer/type or missing claims
        """
        key = self.refresh_secret if token_type == REFRESH_TOKEN_TYPE else self.secret
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[self.algorithm],
                audience=expected_audience or self.audience,
                issuer=expected_issuer or self.issuer,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpired(str(e)) from e
        except jwt.InvalidSignatureError as e:
            raise TokenInvalid(str(e)) from e
        except jwt.DecodeError as e:
            raise TokenMalformed(str(e)) from e
        except jwt.InvalidTokenError as e:
            raise TokenInvalid(str(e)) from e

        if claims.get("type") != token_type:
            raise TokenInvalid(f"Expected {token_type} token, got {claims.get('type')!r}")
        return claims
