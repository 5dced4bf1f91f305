import asyncio
import logging
import re
from typing import Optional

from ..core.clock import Clock, utcnow
from ..models.principal import AuthResult, ExternalProfile, Principal, Registration, RotationResult
from .auth_exceptions import (
    AccountLocked,
    AlreadyExists,
    AlreadyLinkedElsewhere,
    CredentialRequired,
    InvalidCredentials,
    PrincipalNotFound,
    ProvisioningFailed,
    WeakCredential,
)
from .credential_store import CredentialStore
from .password_codec import PasswordCodec, validate_password_strength
from .session_ledger import SessionLedger
from .tenant_store import TenantStore
from .token_codec import TokenCodec

logger = logging.getLogger(__name__)

MIN_HANDLE_LENGTH = 3
MAX_HANDLE_LENGTH = 50


class AuthenticationService:
    """Registration, login, token refresh, logout and account linking"""

    activation_poll_attempts = 40
    activation_poll_interval = 0.05

    def __init__(
        self,
        credential_store: CredentialStore,
        session_ledger: SessionLedger,
        tenant_store: TenantStore,
        token_codec: TokenCodec,
        password_codec: PasswordCodec,
        clock: Clock = utcnow,
    ):
        self.credential_store = credential_store
        self.session_ledger = session_ledger
        self.tenant_store = tenant_store
        self.token_codec = token_codec
        self.password_codec = password_codec
        self.clock = clock

    # Registration

    async def register(self, registration: Registration) -> Principal:
        """Create a password account together with its tenant storage"""
        principal = await self.credential_store.create(registration)
        return await self._provision_new_principal(principal)

    async def _provision_new_principal(self, principal: Principal) -> Principal:
        """Provision, seed and activate a freshly inserted user, or remove it again"""
        try:
            await self.tenant_store.ensure_provisioned(principal.id, principal.username)
        except Exception as e:
            logger.error(f"Provisioning failed for new user {principal.id}, rolling back: {e}")
            # Row first, then storage: a crash in between leaves an orphaned resource, never a dangling user
            await self.credential_store.delete(principal.id)
            try:
                await self.tenant_store.teardown(
                    principal.id,
                    principal.database_name or self.tenant_store.resource_name_for(principal.id, principal.username),
                )
            except Exception as cleanup_error:
                logger.error(f"Cleanup after failed provisioning of {principal.id} failed: {cleanup_error}")
            if isinstance(e, ProvisioningFailed):
                raise
            raise ProvisioningFailed(str(e)) from e

        if not await self.tenant_store.seed_defaults(principal.id):
            logger.warning(f"User {principal.id} registered without default categories")

        await self.credential_store.activate(principal.id)
        logger.info(f"Registered user {principal.id} ({principal.username})")
        return await self.credential_store.find_by_id(principal.id)

    # Password login

    async def authenticate(
        self,
        identifier: str,
        password: str,
        client_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        principal = await self.credential_store.find_by_handle_or_contact(identifier)
        if principal is None:
            await self.password_codec.verify_password_async(password, self.password_codec.decoy_hash)
            logger.info("Login failed: unknown username/email")
            raise InvalidCredentials("Unknown identifier")

        now = self.clock()
        if self.credential_store.is_locked(principal, now):
            # Rejected without touching the hash or the counter
            logger.warning(f"Login rejected for locked user {principal.id} (locked until {principal.locked_until})")
            raise AccountLocked(principal.locked_until)

        if not principal.has_password:
            await self.password_codec.verify_password_async(password, self.password_codec.decoy_hash)
            logger.info(f"Password login attempted for OAuth-only user {principal.id}")
            raise InvalidCredentials("Account has no password")

        if not await self.password_codec.verify_password_async(password, principal.password_hash):
            result = await self.credential_store.record_failed_login(principal.id, now)
            if result.locked_until is not None and self.credential_store.policy.is_locked(result.locked_until, now):
                logger.warning(
                    f"User {principal.id} locked until {result.locked_until} after {result.attempts} failed attempts"
                )
                raise AccountLocked(result.locked_until)
            remaining = self.credential_store.policy.remaining_attempts(result.attempts)
            logger.info(f"Login failed for user {principal.id}: wrong password ({remaining} attempts left)")
            raise InvalidCredentials("Wrong password")

        if not await self.credential_store.record_successful_login(principal.id, now):
            logger.warning(f"User {principal.id} was locked by a concurrent attempt during login")
            raise AccountLocked(None)

        principal = await self.credential_store.find_by_id(principal.id)
        return await self.start_session(principal, client_address, user_agent)

    async def start_session(
        self,
        principal: Principal,
        client_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        """Issue a token pair and record it in the session ledger"""
        tokens = self.token_codec.issue_token_pair(principal)
        session_id = await self.session_ledger.issue(principal.id, tokens, client_address, user_agent)
        logger.info(f"Started session {session_id} for user {principal.id}")
        return AuthResult(principal=principal, tokens=tokens, session_id=session_id)

    async def refresh(self, refresh_token: str) -> RotationResult:
        return await self.session_ledger.rotate(refresh_token)

    async def logout(self, principal_id: str, session_id: Optional[str] = None):
        """Revoke one session or all of them; a missing session is not an error"""
        revoked = await self.session_ledger.revoke(principal_id, session_id)
        logger.info(f"Logout for user {principal_id}: {revoked} sessions revoked")

    # External accounts

    async def link_external_account(
        self,
        principal_id: str,
        external_id: str,
        profile_picture: Optional[str] = None,
    ) -> Principal:
        principal = await self._require_principal(principal_id)
        if principal.google_id == external_id:
            return principal
        await self.credential_store.link_external_id(principal_id, external_id, profile_picture)
        logger.info(f"Linked Google account to user {principal_id}")
        return await self.credential_store.find_by_id(principal_id)

    async def unlink_external_account(self, principal_id: str) -> Principal:
        principal = await self._require_principal(principal_id)
        if not principal.has_password:
            raise CredentialRequired("Cannot unlink the only sign-in method")
        await self.credential_store.unlink_external_id(principal_id)
        logger.info(f"Unlinked Google account from user {principal_id}")
        return await self.credential_store.find_by_id(principal_id)

    async def authenticate_or_create_from_external(self, profile: ExternalProfile) -> Principal:
        """Resolve an OAuth identity: by Google id, then by email (linking), else a new user"""
        principal = await self.credential_store.find_by_external_id(profile.external_id)
        if principal:
            return principal

        principal = await self.credential_store.find_by_contact(profile.email)
        if principal:
            logger.info(f"Linking Google account to existing user {principal.id} by email")
            return await self.link_external_account(principal.id, profile.external_id, profile.profile_picture)

        handle = await self.generate_handle(profile.email)
        try:
            principal = await self.credential_store.create_external(profile, handle)
        except (AlreadyExists, AlreadyLinkedElsewhere):
            # A concurrent callback for the same identity may have won the insert
            winner = await self._wait_for_activation(profile.external_id)
            if winner is None:
                raise
            return winner
        return await self._provision_new_principal(principal)

    async def _wait_for_activation(self, external_id: str) -> Optional[Principal]:
        """Wait for another first sign-in with this Google id to finish provisioning.

        Returns None when no account holds the id at all.
        """
        seen = False
        for _ in range(self.activation_poll_attempts):
            principal = await self.credential_store.find_by_external_id(external_id, include_inactive=True)
            if principal is None:
                if seen:
                    raise ProvisioningFailed(f"Concurrent sign-up for Google id {external_id} was rolled back")
                return None
            if principal.is_active:
                return principal
            seen = True
            await asyncio.sleep(self.activation_poll_interval)
        raise ProvisioningFailed(f"Concurrent sign-up for Google id {external_id} never became active")

    async def generate_handle(self, email: str) -> str:
        """Derive an unused username from the local part of an email address"""
        local_part = email.split("@", 1)[0].lower()
        base = re.sub(r"[^a-z0-9_]", "_", local_part).strip("_") or "user"
        if len(base) < MIN_HANDLE_LENGTH:
            base = f"{base}_user"
        base = base[:MAX_HANDLE_LENGTH - 6]

        handle = base
        counter = 1
        while await self.credential_store.handle_exists(handle):
            handle = f"{base}_{counter}"
            counter += 1
        return handle

    # Account management

    async def get_principal(self, principal_id: str) -> Principal:
        return await self._require_principal(principal_id)

    async def change_password(self, principal_id: str, current_password: str, new_password: str):
        """Replace the password and sign out every session"""
        principal = await self._require_principal(principal_id)
        if not await self.password_codec.verify_password_async(current_password, principal.password_hash):
            raise InvalidCredentials("Current password is incorrect")

        errors = validate_password_strength(new_password)
        if errors:
            raise WeakCredential(errors)

        new_hash = await self.password_codec.hash_password_async(new_password)
        await self.credential_store.update_password_hash(principal_id, new_hash)
        revoked = await self.session_ledger.revoke(principal_id)
        logger.info(f"Password changed for user {principal_id}, {revoked} sessions revoked")

    async def update_profile(
        self,
        principal_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Principal:
        await self._require_principal(principal_id)
        return await self.credential_store.update_profile(principal_id, first_name, last_name, email)

    async def delete_account(self, principal_id: str, password: Optional[str] = None):
        """Delete the user row (sessions cascade), then drop its tenant storage"""
        principal = await self._require_principal(principal_id)
        if principal.has_password:
            if not password or not await self.password_codec.verify_password_async(password, principal.password_hash):
                raise InvalidCredentials("Password confirmation failed")

        resource_name = principal.database_name
        await self.credential_store.delete(principal_id)
        await self.tenant_store.teardown(principal_id, resource_name)
        logger.info(f"Deleted account {principal_id}")

    async def cleanup_expired_sessions(self) -> int:
        return await self.session_ledger.sweep_expired()

    async def _require_principal(self, principal_id: str) -> Principal:
        principal = await self.credential_store.find_by_id(principal_id)
        if principal is None:
            raise PrincipalNotFound(f"No active user {principal_id}")
        return principal
