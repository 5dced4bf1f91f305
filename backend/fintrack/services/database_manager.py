import logging
import os
import re
from typing import List, Optional

from ..db.database import Database
from ..db.migrations import Migration, run_migrations
from ..db.tenant_schema import TENANT_MIGRATIONS
from .auth_exceptions import ProvisioningFailed, TenantNotFound
from .connection_cache import CacheEntry, ResourceState, TenantConnectionCache
from .credential_store import CredentialStore
from .tenant_store import TenantConnection, TenantStore

logger = logging.getLogger(__name__)

DATABASE_FILE_SUFFIXES = ("", "-wal", "-shm", "-journal")


class DatabaseManager(TenantStore):
    """Service for managing user-specific databases, one SQLite file per user"""

    strategy = "per_tenant"

    def __init__(
        self,
        credential_store: CredentialStore,
        data_dir: str,
        cache: Optional[TenantConnectionCache] = None,
        migrations: List[Migration] = TENANT_MIGRATIONS,
    ):
        super().__init__(credential_store, cache, migrations)
        self.data_dir = data_dir

    async def initialize(self):
        os.makedirs(self.data_dir, exist_ok=True)

    @staticmethod
    def resource_name_for(principal_id: str, handle: str) -> str:
        """Deterministic database name: finance_<handle>_<user id without dashes>"""
        slug = re.sub(r"[^a-z0-9_]", "_", handle.lower())[:40]
        return f"finance_{slug}_{principal_id.replace('-', '')}"

    def path_for(self, resource_name: str) -> str:
        return os.path.join(self.data_dir, f"{resource_name}.db")

    def _view(self, principal_id: str, entry: CacheEntry) -> TenantConnection:
        return TenantConnection(
            entry.database, principal_id, resource_name=entry.resource_name, write_lock=entry.write_lock
        )

    async def _cached(self, principal_id: str) -> Optional[CacheEntry]:
        """Return the cached entry if its connection still answers, evicting it otherwise"""
        entry = self.cache.get(principal_id)
        if entry is None:
            return None
        if await entry.database.ping():
            return entry
        logger.warning(f"Tenant connection {entry.resource_name} failed health check, reopening")
        await self.cache.evict(principal_id)
        return None

    async def _open(self, principal_id: str, resource_name: str) -> CacheEntry:
        database = Database(self.path_for(resource_name))
        await database.connect()
        entry = CacheEntry(resource_name=resource_name, database=database)
        self.cache.put(principal_id, entry)
        return entry

    async def ensure_provisioned(self, principal_id: str, handle: str) -> TenantConnection:
        entry = await self._cached(principal_id)
        if entry:
            return self._view(principal_id, entry)

        async with self.cache.locked(principal_id):
            # Another request may have provisioned while we waited
            entry = await self._cached(principal_id)
            if entry:
                return self._view(principal_id, entry)

            principal = await self.credential_store.find_by_id(principal_id, include_inactive=True)
            if principal is None:
                raise TenantNotFound(f"No user {principal_id}")

            if principal.database_name and os.path.exists(self.path_for(principal.database_name)):
                entry = await self._open(principal_id, principal.database_name)
                return self._view(principal_id, entry)

            resource_name = principal.database_name or self.resource_name_for(principal_id, handle)
            entry = await self._provision(principal_id, resource_name)
            return self._view(principal_id, entry)

    async def _provision(self, principal_id: str, resource_name: str) -> CacheEntry:
        """Create the database file, apply the schema and record the pointer"""
        path = self.path_for(resource_name)
        logger.info(f"Provisioning tenant database {resource_name} for user {principal_id}")
        self.cache.set_state(principal_id, ResourceState.PROVISIONING)
        os.makedirs(self.data_dir, exist_ok=True)

        database = Database(path)
        try:
            await database.connect()
            await run_migrations(database, self.migrations)
            await self.credential_store.set_tenant_resource(principal_id, resource_name)
        except Exception as e:
            logger.error(f"Provisioning {resource_name} failed: {e}", exc_info=True)
            self.cache.set_state(principal_id, ResourceState.ABSENT)
            await database.disconnect()
            self._remove_files(path)
            raise ProvisioningFailed(f"Could not provision {resource_name}: {e}") from e

        entry = CacheEntry(resource_name=resource_name, database=database)
        self.cache.put(principal_id, entry)
        return entry

    async def get_connection(self, principal_id: str) -> TenantConnection:
        entry = await self._cached(principal_id)
        if entry:
            return self._view(principal_id, entry)

        async with self.cache.locked(principal_id):
            entry = await self._cached(principal_id)
            if entry:
                return self._view(principal_id, entry)

            principal = await self.credential_store.find_by_id(principal_id, include_inactive=True)
            if principal is None or not principal.database_name:
                raise TenantNotFound(f"User {principal_id} has no tenant database")
            if not os.path.exists(self.path_for(principal.database_name)):
                raise TenantNotFound(f"Tenant database {principal.database_name} is missing")

            entry = await self._open(principal_id, principal.database_name)
            return self._view(principal_id, entry)

    async def teardown(self, principal_id: str, resource_name: Optional[str] = None):
        await self._require_deleted(principal_id)
        async with self.cache.locked(principal_id):
            entry = await self.cache.evict(principal_id)
            resource_name = resource_name or (entry.resource_name if entry else None)
            if not resource_name:
                logger.info(f"No tenant database to remove for user {principal_id}")
                return
            removed = self._remove_files(self.path_for(resource_name))
            logger.info(f"Removed tenant database {resource_name} ({removed} files)")

    async def resource_state(self, principal_id: str) -> ResourceState:
        state = self.cache.state(principal_id)
        if state is not ResourceState.ABSENT:
            return state
        principal = await self.credential_store.find_by_id(principal_id, include_inactive=True)
        if principal and principal.database_name and os.path.exists(self.path_for(principal.database_name)):
            return ResourceState.READY
        return ResourceState.ABSENT

    def _remove_files(self, path: str) -> int:
        removed = 0
        for suffix in DATABASE_FILE_SUFFIXES:
            candidate = f"{path}{suffix}"
            if os.path.exists(candidate):
                os.remove(candidate)
                removed += 1
        return removed

    async def upgrade_all(self) -> int:
        """Apply pending migrations to every provisioned tenant database"""
        upgraded = 0
        for row in await self.credential_store.list_tenant_resources():
            path = self.path_for(row["database_name"])
            if not os.path.exists(path):
                logger.warning(f"Tenant database {row['database_name']} for user {row['id']} is missing")
                continue
            database = Database(path)
            try:
                if await run_migrations(database, self.migrations):
                    upgraded += 1
            finally:
                await database.disconnect()
        return upgraded
