"""
Tenant storage strategies.

A TenantStore hands out the only connections data-access code may use for a
user's finance data. Two interchangeable implementations exist:

- DatabaseManager (database_manager.py): one SQLite file per user
- SharedTenantStore (this module): one database, rows filtered by user_id

Queries issued through a TenantConnection use named parameters and get
``:user_id`` bound automatically, so the same SQL runs under both.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..db.database import Database
from ..db.migrations import Migration, run_migrations
from ..db.tenant_schema import DEFAULT_CATEGORIES, DEFAULT_SETTINGS, TENANT_MIGRATIONS
from .auth_exceptions import ProvisioningFailed, TenantNotFound, TenantPredicateError
from .connection_cache import ResourceState, TenantConnectionCache
from .credential_store import CredentialStore

logger = logging.getLogger(__name__)

TENANT_PARAM = "user_id"


class TenantConnection:
    """A user-scoped view over a tenant database connection.

    On shared storage every view wraps the same SQLite connection, so a view
    takes the store's write lock at its first write and keeps it until it
    commits or rolls back. Another tenant's commit or rollback can then never
    land on this view's pending changes.
    """

    def __init__(
        self,
        database: Database,
        tenant_id: str,
        resource_name: Optional[str] = None,
        require_predicate: bool = False,
        write_lock: Optional[asyncio.Lock] = None,
    ):
        if not tenant_id:
            raise TenantPredicateError("Tenant connection requires a user id")
        self.database = database
        self.tenant_id = tenant_id
        self.resource_name = resource_name
        self.require_predicate = require_predicate
        self.write_lock = write_lock
        self._in_transaction = False

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def _bind(self, query: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if self.require_predicate and f":{TENANT_PARAM}" not in query:
            raise TenantPredicateError(f"Query on shared tenant storage lacks :{TENANT_PARAM} predicate")
        bound = dict(params or {})
        bound[TENANT_PARAM] = self.tenant_id
        return bound

    async def _begin_write(self, query: str):
        if self.write_lock is None or self._in_transaction:
            return
        if query.lstrip().upper().startswith("SELECT"):
            return
        await self.write_lock.acquire()
        self._in_transaction = True

    def _end_write(self):
        if self._in_transaction:
            self._in_transaction = False
            self.write_lock.release()

    async def execute(self, query: str, params: Optional[Dict[str, Any]] = None):
        bound = self._bind(query, params)
        await self._begin_write(query)
        return await self.database.execute(query, bound)

    async def fetch_one(self, query: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        return await self.database.fetch_one(query, self._bind(query, params))

    async def fetch_all(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self.database.fetch_all(query, self._bind(query, params))

    async def commit(self):
        # Without the lock there is nothing of ours to commit
        if self.write_lock is not None and not self._in_transaction:
            return
        try:
            await self.database.commit()
        finally:
            self._end_write()

    async def rollback(self):
        if self.write_lock is not None and not self._in_transaction:
            return
        try:
            await self.database.rollback()
        finally:
            self._end_write()

    async def release(self):
        """Roll back whatever the holder left uncommitted"""
        if self._in_transaction:
            logger.warning(f"Rolling back uncommitted tenant writes for user {self.tenant_id}")
            await self.rollback()


class TenantStore(ABC):
    """Provisioning and connection lifecycle for per-user finance data"""

    strategy: str = ""

    def __init__(
        self,
        credential_store: CredentialStore,
        cache: Optional[TenantConnectionCache] = None,
        migrations: List[Migration] = TENANT_MIGRATIONS,
    ):
        self.credential_store = credential_store
        self.cache = cache if cache is not None else TenantConnectionCache()
        self.migrations = migrations

    async def initialize(self):
        pass

    async def close(self):
        await self.cache.close_all()

    @abstractmethod
    async def ensure_provisioned(self, principal_id: str, handle: str) -> TenantConnection:
        """Create the user's storage if needed and return a connection to it"""

    @abstractmethod
    async def get_connection(self, principal_id: str) -> TenantConnection:
        """Return a healthy connection, raising TenantNotFound if none was provisioned"""

    @abstractmethod
    async def teardown(self, principal_id: str, resource_name: Optional[str] = None):
        """Drop the user's storage. Only valid once the user row is gone."""

    def resource_name_for(self, principal_id: str, handle: str) -> Optional[str]:
        """Name of the dedicated resource for a user, if this strategy creates one"""
        return None

    @abstractmethod
    async def resource_state(self, principal_id: str) -> ResourceState:
        pass

    async def seed_defaults(self, principal_id: str) -> bool:
        """Insert the default categories and settings. Failures are logged, not raised."""
        connection = None
        try:
            connection = await self.get_connection(principal_id)
            for name, color, category_type in DEFAULT_CATEGORIES:
                await connection.execute("""
                    INSERT OR IGNORE INTO categories (id, user_id, name, color, type, is_default)
                    VALUES (:id, :user_id, :name, :color, :type, 1)
                """, {"id": str(uuid.uuid4()), "name": name, "color": color, "type": category_type})
            for key, value in DEFAULT_SETTINGS.items():
                await connection.execute("""
                    INSERT OR IGNORE INTO settings (user_id, setting_key, setting_value)
                    VALUES (:user_id, :key, :value)
                """, {"key": key, "value": value})
            await connection.commit()
            logger.info(f"Seeded default categories and settings for user {principal_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to seed defaults for user {principal_id}: {e}", exc_info=True)
            if connection is not None:
                try:
                    await connection.release()
                except Exception as rollback_error:
                    logger.warning(f"Rollback after failed seeding also failed: {rollback_error}")
            return False

    async def _require_deleted(self, principal_id: str):
        if await self.credential_store.exists(principal_id):
            raise RuntimeError(f"Refusing to tear down storage of existing user {principal_id}")


class SharedTenantStore(TenantStore):
    """All users in one database, every statement filtered by user_id"""

    strategy = "shared"

    def __init__(
        self,
        credential_store: CredentialStore,
        db_path: str,
        cache: Optional[TenantConnectionCache] = None,
        migrations: List[Migration] = TENANT_MIGRATIONS,
    ):
        super().__init__(credential_store, cache, migrations)
        self.db_path = db_path
        self._database: Optional[Database] = None
        self._open_lock = asyncio.Lock()
        # One transaction at a time on the shared connection
        self._write_lock = asyncio.Lock()

    async def initialize(self):
        await self._shared_database()

    async def close(self):
        await super().close()
        if self._database:
            await self._database.disconnect()
            self._database = None

    async def _shared_database(self) -> Database:
        if self._database and await self._database.ping():
            return self._database
        async with self._open_lock:
            if self._database and await self._database.ping():
                return self._database
            if self._database:
                logger.warning(f"Shared finance database {self.db_path} failed health check, reopening")
                await self._database.disconnect()
            database = Database(self.db_path)
            await database.connect()
            await run_migrations(database, self.migrations)
            self._database = database
            return database

    def _view(self, principal_id: str, database: Database) -> TenantConnection:
        return TenantConnection(database, principal_id, require_predicate=True, write_lock=self._write_lock)

    async def ensure_provisioned(self, principal_id: str, handle: str) -> TenantConnection:
        if not await self.credential_store.exists(principal_id):
            raise TenantNotFound(f"No user {principal_id}")
        try:
            database = await self._shared_database()
        except Exception as e:
            logger.error(f"Shared storage unavailable while provisioning {handle}: {e}")
            raise ProvisioningFailed(str(e)) from e
        self.cache.set_state(principal_id, ResourceState.READY)
        return self._view(principal_id, database)

    async def get_connection(self, principal_id: str) -> TenantConnection:
        if not await self.credential_store.exists(principal_id):
            raise TenantNotFound(f"No user {principal_id}")
        return self._view(principal_id, await self._shared_database())

    async def teardown(self, principal_id: str, resource_name: Optional[str] = None):
        await self._require_deleted(principal_id)
        connection = self._view(principal_id, await self._shared_database())
        try:
            await connection.execute("INSERT OR IGNORE INTO tenant_retirements (user_id) VALUES (:user_id)")
            await connection.execute("DELETE FROM transactions WHERE user_id = :user_id")
            await connection.execute("DELETE FROM categories WHERE user_id = :user_id")
            await connection.execute("DELETE FROM settings WHERE user_id = :user_id")
            await connection.execute("DELETE FROM tenant_retirements WHERE user_id = :user_id")
            await connection.commit()
        except Exception:
            await connection.rollback()
            raise
        self.cache.set_state(principal_id, ResourceState.ABSENT)
        logger.info(f"Removed shared finance rows for deleted user {principal_id}")

    async def resource_state(self, principal_id: str) -> ResourceState:
        if await self.credential_store.exists(principal_id):
            return ResourceState.READY
        return self.cache.state(principal_id)
