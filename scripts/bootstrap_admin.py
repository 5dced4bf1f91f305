#!/usr/bin/env python3
"""Create an admin account, or promote an existing one.

Usage:
    ADMIN_USERNAME=admin ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD='Secure#Pass1' \
        python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --username admin --email admin@example.com --password 'Secure#Pass1'

The account is created through the normal registration path, so it gets
its own finance storage and default categories like any other user.
"""
import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add the backend directory to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "backend"))


async def bootstrap_admin(username: str, email: str, password: str, dry_run: bool = False) -> dict:
    """Create or promote an admin user.

    Returns:
        dict with user_id, email, and status ('created', 'promoted', 'already_admin' or 'dry_run')
    """
    # Import here so settings are read after the environment is final
    from fintrack.models.principal import Registration
    from fintrack.services.service_coordinator import ServiceCoordinator

    coordinator = ServiceCoordinator()
    await coordinator.credential_store.initialize()
    await coordinator.tenant_store.initialize()
    try:
        store = coordinator.credential_store
        existing = await store.find_by_contact(email)

        if existing:
            if existing.is_admin:
                print(f"User {email} already exists as admin (id: {existing.id})")
                return {"user_id": existing.id, "email": email, "status": "already_admin"}
            if dry_run:
                print(f"[DRY RUN] Would promote existing user {email} to admin")
                return {"user_id": existing.id, "email": email, "status": "dry_run"}
            await store.set_admin(existing.id, True)
            print(f"Promoted existing user {email} to admin (id: {existing.id})")
            return {"user_id": existing.id, "email": email, "status": "promoted"}

        if dry_run:
            print(f"[DRY RUN] Would create admin user: {username} <{email}>")
            return {"user_id": None, "email": email, "status": "dry_run"}

        principal = await coordinator.auth_service.register(
            Registration(username=username, email=email, password=password)
        )
        await store.set_admin(principal.id, True)
        print(f"Created admin user: {username} <{email}> (id: {principal.id})")
        return {"user_id": principal.id, "email": email, "status": "created"}
    finally:
        await coordinator.tenant_store.close()


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for Fintrack",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--username", default=os.environ.get("ADMIN_USERNAME", "admin"),
                        help="Admin username (or set ADMIN_USERNAME env var)")
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"),
                        help="Admin email (or set ADMIN_EMAIL env var)")
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"),
                        help="Admin password (or set ADMIN_PASSWORD env var)")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would be done without making changes")
    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)
    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    # Tokens are never issued here, but the token codec refuses an empty secret
    if not os.environ.get("JWT_SECRET"):
        import secrets
        os.environ["JWT_SECRET"] = secrets.token_urlsafe(48)

    from fintrack.services.auth_exceptions import AuthException, WeakCredential

    try:
        result = asyncio.run(bootstrap_admin(args.username, args.email.strip().lower(), args.password, args.dry_run))
    except WeakCredential as e:
        print("Error: password does not meet the policy:")
        for problem in e.errors:
            print(f"  - {problem}")
        sys.exit(1)
    except AuthException as e:
        print(f"Error: {e.public_message} ({e})")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin user created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "promoted":
        print("\nExisting user promoted to admin!")
    elif result["status"] == "already_admin":
        print("\nNo changes needed - user is already an admin.")


if __name__ == "__main__":
    main()
