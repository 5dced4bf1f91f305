from urllib.parse import parse_qs, urlparse

import pytest

from fintrack.services.auth_exceptions import ExternalAuthFailed
from fintrack.services.oauth_client import GoogleOAuthClient, OAuthStateStore

from conftest import google_transport


def make_client(transport, state_store=None):
    return GoogleOAuthClient(
        "client-id",
        "client-secret",
        "http://localhost:8000/api/v1/auth/google/callback",
        state_store=state_store or OAuthStateStore(),
        transport=transport,
    )


def state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


def test_authorization_url_carries_client_and_state():
    client = make_client(google_transport())
    url = client.authorization_url()
    query = parse_qs(urlparse(url).query)

    assert url.startswith("https://accounts.google.com/")
    assert query["client_id"] == ["client-id"]
    assert query["response_type"] == ["code"]
    assert "email" in query["scope"][0]
    assert query["state"][0]


async def test_exchange_code_returns_profile():
    calls = []
    client = make_client(google_transport(calls=calls))
    state = state_from(client.authorization_url())

    profile = await client.exchange_code("auth-code", state)

    assert profile.external_id == "1234567890"
    assert profile.email == "alice@example.com"
    assert profile.first_name == "Alice"
    assert profile.email_verified is True
    token_form = parse_qs(calls[0].content.decode())
    assert token_form["code"] == ["auth-code"]
    assert token_form["grant_type"] == ["authorization_code"]


async def test_state_is_single_use():
    client = make_client(google_transport())
    state = state_from(client.authorization_url())
    await client.exchange_code("auth-code", state)

    with pytest.raises(ExternalAuthFailed):
        await client.exchange_code("auth-code", state)


async def test_unknown_or_missing_state_rejected():
    client = make_client(google_transport())
    with pytest.raises(ExternalAuthFailed):
        await client.exchange_code("auth-code", "forged")
    with pytest.raises(ExternalAuthFailed):
        await client.exchange_code("auth-code", None)


async def test_expired_state_rejected():
    now = [1000.0]
    store = OAuthStateStore(ttl_seconds=60, clock=lambda: now[0])
    client = make_client(google_transport(), state_store=store)
    state = state_from(client.authorization_url())

    now[0] += 61
    with pytest.raises(ExternalAuthFailed):
        await client.exchange_code("auth-code", state)


async def test_provider_error_becomes_external_auth_failed():
    client = make_client(google_transport(token_status=400))
    state = state_from(client.authorization_url())
    with pytest.raises(ExternalAuthFailed):
        await client.exchange_code("bad-code", state)


async def test_profile_without_email_rejected():
    client = make_client(google_transport(userinfo={"id": "1"}))
    state = state_from(client.authorization_url())
    with pytest.raises(ExternalAuthFailed):
        await client.exchange_code("auth-code", state)
