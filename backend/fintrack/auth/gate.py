"""
Per-request bearer token gate.

NoToken -> TokenRequired; token present -> verify -> expired -> TokenExpired,
malformed or invalid -> TokenInvalid, valid -> load user -> IdentityContext.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..models.principal import Principal
from ..services.auth_exceptions import (
    AdminRequired,
    AuthException,
    PrincipalNotFound,
    TokenInvalid,
    TokenRequired,
)
from ..services.credential_store import CredentialStore
from ..services.session_ledger import SessionLedger
from ..services.token_codec import TokenCodec

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


@dataclass
class IdentityContext:
    """Who is making the request; anonymous when principal is None"""
    principal: Optional[Principal] = None
    claims: Dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None
    access_token: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return self.principal is None

    @property
    def user_id(self) -> Optional[str]:
        return self.principal.id if self.principal else None


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class RequestGate:
    def __init__(
        self,
        token_codec: TokenCodec,
        credential_store: CredentialStore,
        session_ledger: Optional[SessionLedger] = None,
        check_session: bool = True,
    ):
        self.token_codec = token_codec
        self.credential_store = credential_store
        self.session_ledger = session_ledger
        self.check_session = check_session and session_ledger is not None

    async def authenticate(self, authorization: Optional[str]) -> IdentityContext:
        token = extract_bearer_token(authorization)
        if token is None:
            raise TokenRequired("No bearer token")

        # TokenExpired and TokenInvalid (incl. TokenMalformed) propagate as-is
        claims = self.token_codec.verify(token)

        principal = await self.credential_store.find_by_id(claims["sub"])
        if principal is None:
            raise PrincipalNotFound(f"Token for missing or inactive user {claims['sub']}")

        session_id = None
        if self.check_session:
            session = await self.session_ledger.find_active_by_access_token(token)
            if session is None:
                raise TokenInvalid(f"Token for user {principal.id} has no active session")
            session_id = session.id

        return IdentityContext(principal=principal, claims=claims, session_id=session_id, access_token=token)

    async def authenticate_optional(self, authorization: Optional[str]) -> IdentityContext:
        try:
            return await self.authenticate(authorization)
        except AuthException as e:
            if extract_bearer_token(authorization):
                logger.debug(f"Optional auth fell back to anonymous: {e}")
            return IdentityContext()

    async def authenticate_admin(self, authorization: Optional[str]) -> IdentityContext:
        identity = await self.authenticate(authorization)
        if not identity.principal.is_admin:
            logger.warning(f"Non-admin user {identity.user_id} attempted an admin operation")
            raise AdminRequired(f"User {identity.user_id} is not an admin")
        return identity
