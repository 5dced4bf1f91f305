import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

import aiosqlite

from ..db.database import Database

logger = logging.getLogger(__name__)


class ResourceState(str, Enum):
    ABSENT = "absent"
    PROVISIONING = "provisioning"
    READY = "ready"


@dataclass
class CacheEntry:
    resource_name: str
    database: Database
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class TenantConnectionCache:
    """Process-local map of user id to open tenant connection.

    Each key gets its own asyncio.Lock so that provisioning or reopening one
    tenant never blocks another. A key's lock lives only while some caller
    holds or waits for it.
    """

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._states: Dict[str, ResourceState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def locked(self, key: str):
        """Hold the per-key lock, dropping it once its last user leaves"""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def put(self, key: str, entry: CacheEntry):
        self._entries[key] = entry
        self._states[key] = ResourceState.READY

    def state(self, key: str) -> ResourceState:
        return self._states.get(key, ResourceState.ABSENT)

    def set_state(self, key: str, state: ResourceState):
        if state is ResourceState.ABSENT:
            self._states.pop(key, None)
        else:
            self._states[key] = state

    async def evict(self, key: str) -> Optional[CacheEntry]:
        """Drop a cached connection and close it"""
        entry = self._entries.pop(key, None)
        self._states.pop(key, None)
        if entry is not None:
            try:
                await entry.database.disconnect()
            except (aiosqlite.Error, ValueError) as e:
                logger.warning(f"Error closing evicted connection {entry.resource_name}: {e}")
        return entry

    async def close_all(self):
        for key in list(self._entries):
            await self.evict(key)
