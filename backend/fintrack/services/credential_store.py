import aiosqlite
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.clock import Clock, from_db, to_db, utcnow
from ..db.credential_schema import CREDENTIAL_SCHEMA
from ..models.principal import ExternalProfile, FailedLoginResult, Principal, Registration
from .auth_exceptions import AlreadyExists, AlreadyLinkedElsewhere, WeakCredential
from .lockout_policy import LockoutPolicy
from .password_codec import PasswordCodec, validate_password_strength

logger = logging.getLogger(__name__)


def normalize_identifier(value: str) -> str:
    """Usernames and emails are unique case-insensitively, so compare lower-cased"""
    return value.strip().lower()


class CredentialStore:
    """Service for the shared credential database (users and their lockout state)"""

    def __init__(
        self,
        db_path: str,
        password_codec: PasswordCodec,
        policy: Optional[LockoutPolicy] = None,
        clock: Clock = utcnow,
        timeout: float = 5.0,
    ):
        self.db_path = db_path
        self.password_codec = password_codec
        self.policy = policy or LockoutPolicy()
        self.clock = clock
        self.timeout = timeout
        self._ensure_directory()

    def _ensure_directory(self):
        """Ensure the shared directory exists"""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    @asynccontextmanager
    async def connect(self):
        """Open a connection with row access by name and foreign keys enforced"""
        async with aiosqlite.connect(self.db_path, timeout=self.timeout) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON")
            yield db

    async def initialize(self):
        """Initialize the credential database with schema"""
        async with self.connect() as db:
            await db.executescript(CREDENTIAL_SCHEMA)
            await db.commit()

    async def ping(self) -> bool:
        async with self.connect() as db:
            cursor = await db.execute("SELECT 1")
            return (await cursor.fetchone()) is not None

    async def _fetch_principal(self, where: str, params: tuple) -> Optional[Principal]:
        async with self.connect() as db:
            cursor = await db.execute(f"SELECT * FROM users WHERE {where}", params)
            row = await cursor.fetchone()
            return Principal.from_dict(dict(row)) if row else None

    # Lookups

    async def find_by_handle_or_contact(self, identifier: str) -> Optional[Principal]:
        """Get an active user by username or email"""
        value = normalize_identifier(identifier)
        return await self._fetch_principal(
            "(username = ? OR email = ?) AND is_active = 1", (value, value)
        )

    async def find_by_id(self, principal_id: str, include_inactive: bool = False) -> Optional[Principal]:
        if include_inactive:
            return await self._fetch_principal("id = ?", (principal_id,))
        return await self._fetch_principal("id = ? AND is_active = 1", (principal_id,))

    async def find_by_external_id(self, external_id: str, include_inactive: bool = False) -> Optional[Principal]:
        if include_inactive:
            return await self._fetch_principal("google_id = ?", (external_id,))
        return await self._fetch_principal("google_id = ? AND is_active = 1", (external_id,))

    async def find_by_contact(self, email: str) -> Optional[Principal]:
        return await self._fetch_principal("email = ? AND is_active = 1", (normalize_identifier(email),))

    async def handle_exists(self, username: str) -> bool:
        """Check if username is taken, including accounts still being set up"""
        return await self._fetch_principal("username = ?", (normalize_identifier(username),)) is not None

    async def exists(self, principal_id: str) -> bool:
        return await self.find_by_id(principal_id, include_inactive=True) is not None

    async def _identity_taken(self, username: str, email: str) -> bool:
        return await self._fetch_principal("username = ? OR email = ?", (username, email)) is not None

    # Creation and deletion

    async def create(self, registration: Registration) -> Principal:
        """Create a password account. The row starts inactive until its tenant resource exists."""
        errors = validate_password_strength(registration.password)
        if errors:
            raise WeakCredential(errors)

        username = normalize_identifier(registration.username)
        email = normalize_identifier(registration.email)
        if await self._identity_taken(username, email):
            raise AlreadyExists(f"Username {username!r} or email {email!r} already registered")

        password_hash = await self.password_codec.hash_password_async(registration.password)
        return await self._insert(
            username=username,
            email=email,
            password_hash=password_hash,
            first_name=registration.first_name,
            last_name=registration.last_name,
        )

    async def create_external(self, profile: ExternalProfile, username: str) -> Principal:
        """Create an OAuth-only account"""
        return await self._insert(
            username=normalize_identifier(username),
            email=normalize_identifier(profile.email),
            google_id=profile.external_id,
            first_name=profile.first_name,
            last_name=profile.last_name,
            profile_picture=profile.profile_picture,
            email_verified=profile.email_verified,
        )

    async def _insert(
        self,
        username: str,
        email: str,
        password_hash: Optional[str] = None,
        google_id: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        profile_picture: Optional[str] = None,
        email_verified: bool = False,
    ) -> Principal:
        principal_id = str(uuid.uuid4())
        now = to_db(self.clock())

        async with self.connect() as db:
            try:
                await db.execute("""
                    INSERT INTO users (
                        id, username, email, password_hash, google_id, first_name, last_name,
                        profile_picture, email_verified, is_active, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """, (principal_id, username, email, password_hash, google_id, first_name, last_name,
                      profile_picture, int(email_verified), now, now))
                await db.commit()
            except aiosqlite.IntegrityError as e:
                if "google_id" in str(e):
                    raise AlreadyLinkedElsewhere(str(e)) from e
                raise AlreadyExists(str(e)) from e

        logger.info(f"Created user {principal_id} ({username})")
        return await self.find_by_id(principal_id, include_inactive=True)

    async def activate(self, principal_id: str):
        async with self.connect() as db:
            await db.execute(
                "UPDATE users SET is_active = 1, updated_at = ? WHERE id = ?",
                (to_db(self.clock()), principal_id)
            )
            await db.commit()

    async def delete(self, principal_id: str) -> bool:
        """Delete a user row. Sessions go with it through the foreign key cascade."""
        async with self.connect() as db:
            cursor = await db.execute("DELETE FROM users WHERE id = ?", (principal_id,))
            await db.commit()
            return cursor.rowcount > 0

    # Lockout state

    def is_locked(self, principal: Principal, now: Optional[datetime] = None) -> bool:
        return self.policy.is_locked(principal.locked_until, now or self.clock())

    async def record_failed_login(self, principal_id: str, now: Optional[datetime] = None) -> FailedLoginResult:
        """Count a failed password check and lock the account when the threshold is reached.

        The increment is refused while the account is locked, so retries inside the
        window neither extend the lock nor grow the counter.
        """
        now = now or self.clock()
        now_s = to_db(now)
        lock_s = to_db(self.policy.lock_expiry_for(self.policy.max_attempts, now))

        async with self.connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute("""
                    UPDATE users SET
                        failed_login_attempts = failed_login_attempts + 1,
                        locked_until = CASE
                            WHEN failed_login_attempts + 1 >= ? THEN ?
                            ELSE NULL
                        END,
                        updated_at = ?
                    WHERE id = ? AND (locked_until IS NULL OR locked_until <= ?)
                """, (self.policy.max_attempts, lock_s, now_s, principal_id, now_s))
                applied = cursor.rowcount == 1

                cursor = await db.execute(
                    "SELECT failed_login_attempts, locked_until FROM users WHERE id = ?",
                    (principal_id,)
                )
                row = await cursor.fetchone()
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        if row is None:
            return FailedLoginResult(attempts=0, locked_until=None, applied=False)
        return FailedLoginResult(
            attempts=row["failed_login_attempts"],
            locked_until=from_db(row["locked_until"]),
            applied=applied,
        )

    async def record_successful_login(self, principal_id: str, now: Optional[datetime] = None) -> bool:
        """Reset the failure counter. Returns False if the account became locked meanwhile."""
        now_s = to_db(now or self.clock())
        async with self.connect() as db:
            cursor = await db.execute("""
                UPDATE users SET
                    failed_login_attempts = 0,
                    locked_until = NULL,
                    last_login = ?,
                    updated_at = ?
                WHERE id = ? AND (locked_until IS NULL OR locked_until <= ?)
            """, (now_s, now_s, principal_id, now_s))
            await db.commit()
            return cursor.rowcount == 1

    # Mutations

    async def set_tenant_resource(self, principal_id: str, database_name: str):
        async with self.connect() as db:
            await db.execute("""
                UPDATE users SET database_name = ?, updated_at = ?
                WHERE id = ? AND (database_name IS NULL OR database_name = ?)
            """, (database_name, to_db(self.clock()), principal_id, database_name))
            await db.commit()

    async def link_external_id(self, principal_id: str, external_id: str, profile_picture: Optional[str] = None):
        owner = await self.find_by_external_id(external_id, include_inactive=True)
        if owner and owner.id != principal_id:
            raise AlreadyLinkedElsewhere(f"Google account already linked to user {owner.id}")

        # Relinking replaces a previous Google account instead of refusing
        current = await self.find_by_id(principal_id, include_inactive=True)
        if current and current.google_id and current.google_id != external_id:
            logger.warning(f"User {principal_id} Google account {current.google_id} replaced by {external_id}")

        async with self.connect() as db:
            try:
                await db.execute("""
                    UPDATE users SET
                        google_id = ?,
                        profile_picture = COALESCE(?, profile_picture),
                        updated_at = ?
                    WHERE id = ?
                """, (external_id, profile_picture, to_db(self.clock()), principal_id))
                await db.commit()
            except aiosqlite.IntegrityError as e:
                raise AlreadyLinkedElsewhere(str(e)) from e

    async def unlink_external_id(self, principal_id: str):
        async with self.connect() as db:
            await db.execute(
                "UPDATE users SET google_id = NULL, updated_at = ? WHERE id = ?",
                (to_db(self.clock()), principal_id)
            )
            await db.commit()

    async def update_password_hash(self, principal_id: str, new_password_hash: str):
        """Update user's password hash"""
        async with self.connect() as db:
            await db.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (new_password_hash, to_db(self.clock()), principal_id)
            )
            await db.commit()

    async def update_profile(
        self,
        principal_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Principal:
        updates: Dict[str, Any] = {}
        if first_name is not None:
            updates["first_name"] = first_name
        if last_name is not None:
            updates["last_name"] = last_name
        if email is not None:
            email = normalize_identifier(email)
            other = await self._fetch_principal("email = ? AND id != ?", (email, principal_id))
            if other:
                raise AlreadyExists(f"Email {email!r} already in use")
            updates["email"] = email

        if updates:
            updates["updated_at"] = to_db(self.clock())
            assignments = ", ".join(f"{column} = ?" for column in updates)
            async with self.connect() as db:
                try:
                    await db.execute(
                        f"UPDATE users SET {assignments} WHERE id = ?",
                        (*updates.values(), principal_id)
                    )
                    await db.commit()
                except aiosqlite.IntegrityError as e:
                    raise AlreadyExists(str(e)) from e

        return await self.find_by_id(principal_id)

    async def set_admin(self, principal_id: str, is_admin: bool = True):
        async with self.connect() as db:
            await db.execute(
                "UPDATE users SET is_admin = ?, updated_at = ? WHERE id = ?",
                (int(is_admin), to_db(self.clock()), principal_id)
            )
            await db.commit()

    async def list_tenant_resources(self) -> List[Dict[str, Any]]:
        """Users that own a dedicated tenant database"""
        async with self.connect() as db:
            cursor = await db.execute("""
                SELECT id, username, database_name FROM users
                WHERE database_name IS NOT NULL
                ORDER BY created_at
            """)
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]
