"""Lockout state machine, unit level and as persisted by the credential store."""
import asyncio
from datetime import datetime, timedelta, timezone

from fintrack.models.principal import Registration
from fintrack.services.lockout_policy import LockoutPolicy, LockState

from conftest import STRONG_PASSWORD

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestLockoutPolicy:
    def test_open_without_lock(self):
        assert LockoutPolicy().state(None, NOW) is LockState.OPEN

    def test_locked_before_expiry(self):
        policy = LockoutPolicy()
        assert policy.is_locked(NOW + timedelta(seconds=1), NOW)

    def test_open_exactly_at_expiry(self):
        assert LockoutPolicy().state(NOW, NOW) is LockState.OPEN

    def test_open_after_expiry(self):
        assert not LockoutPolicy().is_locked(NOW - timedelta(microseconds=1), NOW)

    def test_lock_expiry_only_at_threshold(self):
        policy = LockoutPolicy(max_attempts=3, lockout_duration=timedelta(minutes=10))
        assert policy.lock_expiry_for(2, NOW) is None
        assert policy.lock_expiry_for(3, NOW) == NOW + timedelta(minutes=10)
        assert policy.lock_expiry_for(4, NOW) == NOW + timedelta(minutes=10)

    def test_remaining_attempts(self):
        policy = LockoutPolicy(max_attempts=5)
        assert policy.remaining_attempts(0) == 5
        assert policy.remaining_attempts(4) == 1
        assert policy.remaining_attempts(7) == 0


async def _create(services, username="alice", email="a@x.com"):
    await services.credential_store.initialize()
    return await services.credential_store.create(Registration(username, email, STRONG_PASSWORD))


class TestPersistedLockout:
    async def test_fifth_failure_locks(self, per_tenant_services, clock):
        store = per_tenant_services.credential_store
        principal = await _create(per_tenant_services)

        for attempt in range(1, 5):
            result = await store.record_failed_login(principal.id)
            assert result.attempts == attempt
            assert result.locked_until is None

        result = await store.record_failed_login(principal.id)
        assert result.attempts == 5
        assert result.locked_until == clock() + timedelta(minutes=15)

        reloaded = await store.find_by_id(principal.id, include_inactive=True)
        assert store.is_locked(reloaded)

    async def test_failures_while_locked_do_not_extend_lock(self, per_tenant_services, clock):
        store = per_tenant_services.credential_store
        principal = await _create(per_tenant_services)
        for _ in range(5):
            first = await store.record_failed_login(principal.id)

        clock.advance(minutes=5)
        retry = await store.record_failed_login(principal.id)

        assert retry.applied is False
        assert retry.attempts == 5
        assert retry.locked_until == first.locked_until

    async def test_boundary_now_equal_to_lock_expiry_is_open(self, per_tenant_services, clock):
        store = per_tenant_services.credential_store
        principal = await _create(per_tenant_services)
        for _ in range(5):
            result = await store.record_failed_login(principal.id)

        clock.now = result.locked_until - timedelta(microseconds=1)
        reloaded = await store.find_by_id(principal.id, include_inactive=True)
        assert store.is_locked(reloaded)
        assert await store.record_successful_login(principal.id) is False

        clock.now = result.locked_until
        assert not store.is_locked(reloaded)
        assert await store.record_successful_login(principal.id) is True

        reset = await store.find_by_id(principal.id, include_inactive=True)
        assert reset.failed_login_attempts == 0
        assert reset.locked_until is None
        assert reset.last_login == clock()

    async def test_counter_survives_lock_expiry_until_success(self, per_tenant_services, clock):
        store = per_tenant_services.credential_store
        principal = await _create(per_tenant_services)
        for _ in range(5):
            await store.record_failed_login(principal.id)

        clock.advance(minutes=16)
        result = await store.record_failed_login(principal.id)

        # The counter was never reset, so one more failure locks again
        assert result.applied is True
        assert result.attempts == 6
        assert result.locked_until == clock() + timedelta(minutes=15)

    async def test_concurrent_failures_are_all_counted(self, per_tenant_services):
        store = per_tenant_services.credential_store
        principal = await _create(per_tenant_services)

        results = await asyncio.gather(*[store.record_failed_login(principal.id) for _ in range(4)])

        assert sorted(r.attempts for r in results) == [1, 2, 3, 4]
        reloaded = await store.find_by_id(principal.id, include_inactive=True)
        assert reloaded.failed_login_attempts == 4
