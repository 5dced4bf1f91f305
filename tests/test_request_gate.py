from datetime import datetime, timedelta, timezone

import pytest

from fintrack.auth.gate import RequestGate, extract_bearer_token
from fintrack.services.auth_exceptions import (
    AdminRequired,
    PrincipalNotFound,
    TokenExpired,
    TokenInvalid,
    TokenRequired,
)
from fintrack.models.principal import Registration
from fintrack.services.token_codec import TokenCodec

from conftest import STRONG_PASSWORD


@pytest.fixture
def gate(per_tenant_services):
    services = per_tenant_services
    return RequestGate(services.token_codec, services.credential_store, services.session_ledger)


async def _login(services):
    await services.auth_service.register(Registration("alice", "a@x.com", STRONG_PASSWORD))
    return await services.auth_service.authenticate("alice", STRONG_PASSWORD)


def test_extract_bearer_token():
    assert extract_bearer_token("Bearer abc") == "abc"
    assert extract_bearer_token("bearer abc") == "abc"
    assert extract_bearer_token("Basic abc") is None
    assert extract_bearer_token("Bearer ") is None
    assert extract_bearer_token(None) is None


async def test_valid_token_attaches_identity(per_tenant_services, gate):
    async with per_tenant_services as services:
        login = await _login(services)

        identity = await gate.authenticate(f"Bearer {login.tokens.access_token}")

        assert identity.user_id == login.principal.id
        assert identity.session_id == login.session_id
        assert identity.claims["username"] == "alice"
        assert not identity.is_anonymous


async def test_missing_token(gate):
    with pytest.raises(TokenRequired):
        await gate.authenticate(None)
    with pytest.raises(TokenRequired):
        await gate.authenticate("Token abc")


async def test_malformed_token_is_invalid(gate):
    with pytest.raises(TokenInvalid):
        await gate.authenticate("Bearer not-a-jwt")


async def test_expired_token(per_tenant_services, gate):
    async with per_tenant_services as services:
        login = await _login(services)
        past = datetime.now(timezone.utc) - timedelta(days=2)
        stale = TokenCodec(
            secret="unit-test-access-secret",
            refresh_secret="unit-test-refresh-secret",
            clock=lambda: past,
        ).issue_token_pair(login.principal)

        with pytest.raises(TokenExpired):
            await gate.authenticate(f"Bearer {stale.access_token}")


async def test_revoked_session_is_rejected(per_tenant_services, gate):
    async with per_tenant_services as services:
        login = await _login(services)
        await services.auth_service.logout(login.principal.id, login.session_id)

        with pytest.raises(TokenInvalid):
            await gate.authenticate(f"Bearer {login.tokens.access_token}")


async def test_session_check_can_be_disabled(per_tenant_services):
    async with per_tenant_services as services:
        login = await _login(services)
        await services.auth_service.logout(login.principal.id)
        gate = RequestGate(services.token_codec, services.credential_store, services.session_ledger,
                           check_session=False)

        identity = await gate.authenticate(f"Bearer {login.tokens.access_token}")
        assert identity.user_id == login.principal.id
        assert identity.session_id is None


async def test_deleted_user_is_rejected(per_tenant_services, gate):
    async with per_tenant_services as services:
        login = await _login(services)
        await services.auth_service.delete_account(login.principal.id, STRONG_PASSWORD)

        with pytest.raises(PrincipalNotFound):
            await gate.authenticate(f"Bearer {login.tokens.access_token}")


async def test_optional_variant_falls_back_to_anonymous(per_tenant_services, gate):
    async with per_tenant_services as services:
        login = await _login(services)

        assert (await gate.authenticate_optional(None)).is_anonymous
        assert (await gate.authenticate_optional("Bearer garbage")).is_anonymous
        identity = await gate.authenticate_optional(f"Bearer {login.tokens.access_token}")
        assert identity.user_id == login.principal.id


async def test_admin_variant(per_tenant_services, gate):
    async with per_tenant_services as services:
        login = await _login(services)
        header = f"Bearer {login.tokens.access_token}"

        with pytest.raises(AdminRequired):
            await gate.authenticate_admin(header)

        await services.credential_store.set_admin(login.principal.id)
        identity = await gate.authenticate_admin(header)
        assert identity.principal.is_admin
