import asyncio

import pytest

from fintrack.core.config import Settings
from fintrack.models.principal import Registration
from fintrack.services.background_tasks import BackgroundTaskManager
from fintrack.services.database_manager import DatabaseManager
from fintrack.services.service_coordinator import (
    ServiceCoordinator,
    create_tenant_store,
    get_service_coordinator,
    reset_service_coordinator,
)
from fintrack.services.tenant_store import SharedTenantStore

from conftest import STRONG_PASSWORD


def make_settings(tmp_path, **overrides):
    values = dict(
        CREDENTIAL_DB_PATH=str(tmp_path / "shared" / "credentials.db"),
        TENANT_DATA_DIR=str(tmp_path / "tenants"),
        SHARED_DATA_DB_PATH=str(tmp_path / "shared" / "finance.db"),
        BCRYPT_ROUNDS=4,
        SESSION_SWEEP_ENABLED=False,
        GOOGLE_CLIENT_ID=None,
    )
    values.update(overrides)
    return Settings(**values)


def test_strategy_selection(tmp_path):
    coordinator = ServiceCoordinator(make_settings(tmp_path))
    assert isinstance(coordinator.tenant_store, DatabaseManager)
    assert coordinator.oauth_client is None

    shared = ServiceCoordinator(make_settings(tmp_path, TENANT_STRATEGY="shared"))
    assert isinstance(shared.tenant_store, SharedTenantStore)


def test_unknown_strategy_is_rejected(tmp_path):
    config = make_settings(tmp_path, TENANT_STRATEGY="postgres")
    with pytest.raises(ValueError):
        create_tenant_store(config, None)


def test_missing_jwt_secret_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        ServiceCoordinator(make_settings(tmp_path, JWT_SECRET=""))


async def test_initialize_and_shutdown_start_and_stop_the_sweeper(tmp_path):
    coordinator = ServiceCoordinator(make_settings(tmp_path, SESSION_SWEEP_ENABLED=True))

    await coordinator.initialize()
    assert coordinator.initialized
    assert coordinator.background_tasks.is_running
    assert await coordinator.credential_store.ping()

    await coordinator.shutdown()
    assert not coordinator.background_tasks.is_running
    assert coordinator.background_tasks.tasks == {}


async def test_sweep_loop_runs_immediately(per_tenant_services, clock):
    async with per_tenant_services as services:
        await services.auth_service.register(Registration("alice", "a@x.com", STRONG_PASSWORD))
        await services.auth_service.authenticate("alice", STRONG_PASSWORD)
        clock.advance(days=31)

        manager = BackgroundTaskManager(services.session_ledger, sweep_interval_seconds=3600)
        await manager.start()
        for _ in range(50):
            await asyncio.sleep(0.02)
            async with services.credential_store.connect() as db:
                cursor = await db.execute("SELECT COUNT(*) AS n FROM user_sessions")
                if (await cursor.fetchone())["n"] == 0:
                    break
        await manager.stop()

        async with services.credential_store.connect() as db:
            cursor = await db.execute("SELECT COUNT(*) AS n FROM user_sessions")
            assert (await cursor.fetchone())["n"] == 0


async def test_sweep_errors_are_swallowed():
    class BrokenLedger:
        async def sweep_expired(self):
            raise RuntimeError("database is locked")

    manager = BackgroundTaskManager(BrokenLedger())
    assert await manager.run_session_sweep() == 0


def test_global_coordinator_is_shared_until_reset():
    reset_service_coordinator()
    first = get_service_coordinator()
    assert get_service_coordinator() is first

    reset_service_coordinator()
    assert get_service_coordinator() is not first
    reset_service_coordinator()
