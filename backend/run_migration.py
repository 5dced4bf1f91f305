#!/usr/bin/env python3
"""
Migration Runner - bring every tenant database up to the latest schema

Per-tenant strategy: each provisioned user database gets its pending
migrations. Shared strategy: the single finance database is migrated.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add the backend directory to Python path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))

from fintrack.services.database_manager import DatabaseManager
from fintrack.services.service_coordinator import ServiceCoordinator


async def run_migration() -> bool:
    coordinator = ServiceCoordinator()
    try:
        await coordinator.credential_store.initialize()
        tenant_store = coordinator.tenant_store
        if isinstance(tenant_store, DatabaseManager):
            upgraded = await tenant_store.upgrade_all()
            print(f"Upgraded {upgraded} tenant databases")
        else:
            await tenant_store.initialize()
            print(f"Shared finance database at {tenant_store.db_path} is up to date")
        return True
    except Exception as e:
        print(f"Migration error: {e}")
        return False
    finally:
        await coordinator.tenant_store.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print("=== Fintrack Database Migration ===")
    print()

    success = asyncio.run(run_migration())
    if success:
        print()
        print("Migration completed successfully.")
    else:
        print()
        print("Migration failed. Please check the error messages above.")
        sys.exit(1)
