import asyncio
import inspect
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Point every data path at a scratch directory before settings are imported
_test_tmp_dir = tempfile.mkdtemp(prefix="fintrack_test_")
os.environ.setdefault("DATA_DIR", _test_tmp_dir)
os.environ.setdefault("CREDENTIAL_DB_PATH", os.path.join(_test_tmp_dir, "shared", "credentials.db"))
os.environ.setdefault("TENANT_DATA_DIR", os.path.join(_test_tmp_dir, "tenants"))
os.environ.setdefault("SHARED_DATA_DB_PATH", os.path.join(_test_tmp_dir, "shared", "finance.db"))
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-for-testing-only")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SESSION_SWEEP_ENABLED", "false")

import httpx  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT / "backend") not in sys.path:
    sys.path.insert(0, str(ROOT / "backend"))

from fintrack.services.auth_service import AuthenticationService  # noqa: E402
from fintrack.services.credential_store import CredentialStore  # noqa: E402
from fintrack.services.database_manager import DatabaseManager  # noqa: E402
from fintrack.services.lockout_policy import LockoutPolicy  # noqa: E402
from fintrack.services.password_codec import PasswordCodec  # noqa: E402
from fintrack.services.session_ledger import SessionLedger  # noqa: E402
from fintrack.services.oauth_client import GOOGLE_TOKEN_URL, GOOGLE_USERINFO_URL  # noqa: E402
from fintrack.services.tenant_store import SharedTenantStore  # noqa: E402
from fintrack.services.token_codec import TokenCodec  # noqa: E402

STRONG_PASSWORD = "Abcd1234!"

GOOGLE_USERINFO = {
    "id": "1234567890",
    "email": "alice@example.com",
    "verified_email": True,
    "given_name": "Alice",
    "family_name": "Liddell",
    "picture": "https://pics.example.com/alice.png",
}


def google_transport(token_status=200, userinfo=None, calls=None):
    """Stand-in for Google's token and userinfo endpoints"""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if str(request.url) == GOOGLE_TOKEN_URL:
            if token_status != 200:
                return httpx.Response(token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "google-access", "token_type": "Bearer"})
        if str(request.url) == GOOGLE_USERINFO_URL:
            if request.headers.get("Authorization") != "Bearer google-access":
                return httpx.Response(401)
            return httpx.Response(200, json=userinfo if userinfo is not None else GOOGLE_USERINFO)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class FakeClock:
    """Settable UTC clock; starts at the real current time"""

    def __init__(self, start=None):
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class Services:
    """Wires the identity components against a scratch directory.

    Used as ``async with services:`` so connections are opened and closed on
    the test's own event loop.
    """

    def __init__(self, tmp_path: Path, strategy: str, clock: FakeClock):
        self.clock = clock
        self.strategy = strategy
        self.password_codec = PasswordCodec(rounds=4)
        self.policy = LockoutPolicy(max_attempts=5, lockout_duration=timedelta(minutes=15))
        self.credential_store = CredentialStore(
            str(tmp_path / "shared" / "credentials.db"), self.password_codec, self.policy, clock=clock
        )
        # PyJWT checks iat/exp against the real clock, so the codec keeps it
        self.token_codec = TokenCodec(
            secret="unit-test-access-secret",
            refresh_secret="unit-test-refresh-secret",
            access_ttl=timedelta(hours=24),
            refresh_ttl=timedelta(days=30),
        )
        self.session_ledger = SessionLedger(self.credential_store, self.token_codec, clock=clock)
        if strategy == "per_tenant":
            self.tenant_store = DatabaseManager(self.credential_store, str(tmp_path / "tenants"))
        else:
            self.tenant_store = SharedTenantStore(self.credential_store, str(tmp_path / "shared" / "finance.db"))
        self.auth_service = AuthenticationService(
            credential_store=self.credential_store,
            session_ledger=self.session_ledger,
            tenant_store=self.tenant_store,
            token_codec=self.token_codec,
            password_codec=self.password_codec,
            clock=clock,
        )

    async def __aenter__(self):
        await self.credential_store.initialize()
        await self.tenant_store.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.tenant_store.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["per_tenant", "shared"])
def services(request, tmp_path, clock):
    """Full component set, once per tenant storage strategy"""
    return Services(tmp_path, request.param, clock)


@pytest.fixture
def per_tenant_services(tmp_path, clock):
    return Services(tmp_path, "per_tenant", clock)


@pytest.fixture
def shared_services(tmp_path, clock):
    return Services(tmp_path, "shared", clock)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
