import logging
import uuid
from typing import List, Optional

from ..core.clock import Clock, to_db, utcnow
from ..models.principal import RotationResult, SessionRecord, TokenPair
from .auth_exceptions import InvalidRefreshToken, TokenExpired, TokenInvalid
from .credential_store import CredentialStore
from .token_codec import REFRESH_TOKEN_TYPE, TokenCodec, hash_token

logger = logging.getLogger(__name__)


class SessionLedger:
    """Server-side record of issued token pairs, stored as hashes"""

    def __init__(self, credential_store: CredentialStore, token_codec: TokenCodec, clock: Clock = utcnow):
        # Sessions live next to the users table so deleting a user cascades
        self.credential_store = credential_store
        self.token_codec = token_codec
        self.clock = clock

    async def issue(
        self,
        principal_id: str,
        tokens: TokenPair,
        client_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        """Record a new session and return its id"""
        session_id = str(uuid.uuid4())
        now = to_db(self.clock())

        async with self.credential_store.connect() as db:
            await db.execute("""
                INSERT INTO user_sessions (
                    id, user_id, token_hash, refresh_token_hash, expires_at, refresh_expires_at,
                    ip_address, user_agent, is_active, created_at, last_used
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
            """, (
                session_id, principal_id,
                hash_token(tokens.access_token), hash_token(tokens.refresh_token),
                to_db(tokens.access_expires_at), to_db(tokens.refresh_expires_at),
                client_address, user_agent, now, now,
            ))
            await db.commit()

        return session_id

    async def rotate(self, refresh_token: str) -> RotationResult:
        """Exchange a refresh token for a new pair. Each refresh token works once."""
        try:
            claims = self.token_codec.verify(refresh_token, token_type=REFRESH_TOKEN_TYPE)
        except (TokenExpired, TokenInvalid) as e:
            raise InvalidRefreshToken(f"Refresh token rejected: {e}") from e

        principal = await self.credential_store.find_by_id(claims["sub"])
        if principal is None:
            raise InvalidRefreshToken(f"Refresh token for missing user {claims['sub']}")

        tokens = self.token_codec.issue_token_pair(principal)
        now = to_db(self.clock())
        old_hash = hash_token(refresh_token)

        async with self.credential_store.connect() as db:
            # Single conditional update: of two concurrent rotations only one matches
            cursor = await db.execute("""
                UPDATE user_sessions SET
                    token_hash = ?,
                    refresh_token_hash = ?,
                    expires_at = ?,
                    refresh_expires_at = ?,
                    last_used = ?
                WHERE refresh_token_hash = ?
                    AND user_id = ?
                    AND is_active = 1
                    AND refresh_expires_at > ?
                RETURNING id
            """, (
                hash_token(tokens.access_token), hash_token(tokens.refresh_token),
                to_db(tokens.access_expires_at), to_db(tokens.refresh_expires_at),
                now, old_hash, principal.id, now,
            ))
            rows = await cursor.fetchall()
            await db.commit()
            row = rows[0] if rows else None

        if row is None:
            logger.warning(f"Rejected refresh for user {principal.id}: token unknown, rotated, revoked or expired")
            raise InvalidRefreshToken("No active session for refresh token")

        return RotationResult(principal=principal, tokens=tokens, session_id=row["id"])

    async def revoke(self, principal_id: str, session_id: Optional[str] = None) -> int:
        """Deactivate one session, or every session of the user when no id is given"""
        async with self.credential_store.connect() as db:
            if session_id:
                cursor = await db.execute(
                    "UPDATE user_sessions SET is_active = 0 WHERE id = ? AND user_id = ? AND is_active = 1",
                    (session_id, principal_id)
                )
            else:
                cursor = await db.execute(
                    "UPDATE user_sessions SET is_active = 0 WHERE user_id = ? AND is_active = 1",
                    (principal_id,)
                )
            await db.commit()
            return cursor.rowcount

    async def find_active_by_access_token(self, access_token: str) -> Optional[SessionRecord]:
        """Look up the live session an access token was issued for"""
        now = to_db(self.clock())
        async with self.credential_store.connect() as db:
            cursor = await db.execute("""
                UPDATE user_sessions SET last_used = ?
                WHERE token_hash = ? AND is_active = 1 AND expires_at > ?
                RETURNING *
            """, (now, hash_token(access_token), now))
            rows = await cursor.fetchall()
            await db.commit()
            row = rows[0] if rows else None
            return SessionRecord.from_dict(dict(row)) if row else None

    async def list_active(self, principal_id: str) -> List[SessionRecord]:
        now = to_db(self.clock())
        async with self.credential_store.connect() as db:
            cursor = await db.execute("""
                SELECT * FROM user_sessions
                WHERE user_id = ? AND is_active = 1 AND refresh_expires_at > ?
                ORDER BY created_at DESC
            """, (principal_id, now))
            rows = await cursor.fetchall()
            return [SessionRecord.from_dict(dict(row)) for row in rows]

    async def sweep_expired(self) -> int:
        """Delete sessions past either expiry"""
        now = to_db(self.clock())
        async with self.credential_store.connect() as db:
            cursor = await db.execute(
                "DELETE FROM user_sessions WHERE expires_at < ? OR refresh_expires_at < ?",
                (now, now)
            )
            await db.commit()
            deleted = cursor.rowcount

        if deleted:
            logger.info(f"Swept {deleted} expired sessions")
        return deleted
