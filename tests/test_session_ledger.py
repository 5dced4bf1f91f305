"""Session ledger: issuing, single-use rotation, revocation and sweeping."""
import asyncio

import pytest

from fintrack.models.principal import Registration
from fintrack.services.auth_exceptions import InvalidRefreshToken
from fintrack.services.token_codec import hash_token

from conftest import STRONG_PASSWORD


@pytest.fixture
def ledger(per_tenant_services):
    return per_tenant_services.session_ledger


async def _principal(services, username="alice"):
    store = services.credential_store
    await store.initialize()
    principal = await store.create(Registration(username, f"{username}@x.com", STRONG_PASSWORD))
    await store.activate(principal.id)
    return await store.find_by_id(principal.id)


async def _session(services, principal):
    tokens = services.token_codec.issue_token_pair(principal)
    session_id = await services.session_ledger.issue(principal.id, tokens, "10.0.0.1", "pytest")
    return tokens, session_id


async def test_issue_stores_hashes_only(per_tenant_services, ledger):
    principal = await _principal(per_tenant_services)
    tokens, session_id = await _session(per_tenant_services, principal)

    session = await ledger.find_active_by_access_token(tokens.access_token)
    assert session.id == session_id
    assert session.token_hash == hash_token(tokens.access_token)
    assert session.refresh_token_hash == hash_token(tokens.refresh_token)
    assert session.ip_address == "10.0.0.1"
    assert tokens.access_token not in session.to_dict().values()


async def test_rotation_is_single_use(per_tenant_services, ledger):
    principal = await _principal(per_tenant_services)
    tokens, session_id = await _session(per_tenant_services, principal)

    rotated = await ledger.rotate(tokens.refresh_token)
    assert rotated.session_id == session_id
    assert rotated.principal.id == principal.id
    assert rotated.tokens.refresh_token != tokens.refresh_token

    with pytest.raises(InvalidRefreshToken):
        await ledger.rotate(tokens.refresh_token)

    # The old access token died with the rotation, the new one works
    assert await ledger.find_active_by_access_token(tokens.access_token) is None
    assert (await ledger.find_active_by_access_token(rotated.tokens.access_token)).id == session_id


async def test_concurrent_rotation_has_exactly_one_winner(per_tenant_services, ledger):
    principal = await _principal(per_tenant_services)
    tokens, _ = await _session(per_tenant_services, principal)

    results = await asyncio.gather(
        *[ledger.rotate(tokens.refresh_token) for _ in range(5)],
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert all(isinstance(r, InvalidRefreshToken) for r in losers)


async def test_rotation_rejects_access_token_and_garbage(per_tenant_services, ledger):
    principal = await _principal(per_tenant_services)
    tokens, _ = await _session(per_tenant_services, principal)

    with pytest.raises(InvalidRefreshToken):
        await ledger.rotate(tokens.access_token)
    with pytest.raises(InvalidRefreshToken):
        await ledger.rotate("garbage")


async def test_rotation_rejects_never_issued_token(per_tenant_services, ledger):
    principal = await _principal(per_tenant_services)
    unrecorded = per_tenant_services.token_codec.issue_token_pair(principal)

    with pytest.raises(InvalidRefreshToken):
        await ledger.rotate(unrecorded.refresh_token)


async def test_rotation_rejects_stored_expiry(per_tenant_services, ledger, clock):
    principal = await _principal(per_tenant_services)
    tokens, _ = await _session(per_tenant_services, principal)

    # The JWT itself is still valid; the ledger's own expiry has passed
    clock.advance(days=31)
    with pytest.raises(InvalidRefreshToken):
        await ledger.rotate(tokens.refresh_token)


async def test_revoke_single_session(per_tenant_services, ledger):
    principal = await _principal(per_tenant_services)
    first, first_id = await _session(per_tenant_services, principal)
    second, _ = await _session(per_tenant_services, principal)

    assert await ledger.revoke(principal.id, first_id) == 1
    assert await ledger.find_active_by_access_token(first.access_token) is None
    assert await ledger.find_active_by_access_token(second.access_token) is not None

    with pytest.raises(InvalidRefreshToken):
        await ledger.rotate(first.refresh_token)


async def test_revoke_all_sessions_and_unknown_session(per_tenant_services, ledger):
    principal = await _principal(per_tenant_services)
    await _session(per_tenant_services, principal)
    await _session(per_tenant_services, principal)

    assert await ledger.revoke(principal.id, "no-such-session") == 0
    assert len(await ledger.list_active(principal.id)) == 2
    assert await ledger.revoke(principal.id) == 2
    assert await ledger.list_active(principal.id) == []


async def test_revoke_cannot_touch_another_users_session(per_tenant_services, ledger):
    alice = await _principal(per_tenant_services, "alice")
    bob = await _principal(per_tenant_services, "bob")
    tokens, alice_session = await _session(per_tenant_services, alice)

    assert await ledger.revoke(bob.id, alice_session) == 0
    assert await ledger.find_active_by_access_token(tokens.access_token) is not None


async def test_sweep_deletes_rows_past_either_expiry(per_tenant_services, ledger, clock):
    principal = await _principal(per_tenant_services)
    await _session(per_tenant_services, principal)

    assert await ledger.sweep_expired() == 0

    # Past the 24h access expiry, inside the 30 day refresh window
    clock.advance(hours=25)
    assert await ledger.sweep_expired() == 1
    assert await ledger.sweep_expired() == 0


async def test_sessions_cascade_with_user(per_tenant_services, ledger):
    principal = await _principal(per_tenant_services)
    tokens, _ = await _session(per_tenant_services, principal)

    await per_tenant_services.credential_store.delete(principal.id)
    assert await ledger.find_active_by_access_token(tokens.access_token) is None
    assert await ledger.list_active(principal.id) == []
