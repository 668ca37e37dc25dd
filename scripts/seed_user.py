#!/usr/bin/env python3
"""Seed a user account for local development and smoke testing.

Usage:
    # Using environment variables:
    SEED_NAME=Alice SEED_EMAIL=alice@example.com SEED_PASSWORD=Wonderland123! python scripts/seed_user.py

    # Or with command line args:
    python scripts/seed_user.py --name Alice --email alice@example.com --password Wonderland123!

Environment Variables:
    SEED_NAME, SEED_EMAIL, SEED_PASSWORD: account to create
    DATABASE_URL / DB_*: PostgreSQL connection (memory store when unset)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def seed_user(name: str, email: str, password: str, dry_run: bool = False) -> dict:
    """Create the user unless the email is already registered.

    Returns:
        dict with user_id, email, and status ('created', 'exists' or 'dry_run')
    """
    # imported late so env defaults set by main() apply
    from elsie.api.schemas import RegisterRequest
    from elsie.service.errors import NotFoundError
    from elsie.service.runtime import get_runtime

    body = RegisterRequest(name=name, email=email, password=password)
    runtime = get_runtime()

    try:
        existing = runtime.users.find_by_email(body.email)
    except NotFoundError:
        existing = None
    if existing:
        print(f"User {body.email} already exists (id: {existing.id})")
        return {"user_id": existing.id, "email": body.email, "status": "exists"}

    if dry_run:
        print(f"[DRY RUN] Would create user: {body.email}")
        return {"user_id": None, "email": body.email, "status": "dry_run"}

    result = await runtime.auth.register(body.name, body.email, body.password)
    print(f"Created user: {body.email} (id: {result.user.id})")
    return {
        "user_id": result.user.id,
        "email": body.email,
        "status": "created",
        "access_token": result.tokens.access_token,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Seed a user account for Elsie",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--name", default=os.environ.get("SEED_NAME"))
    parser.add_argument("--email", default=os.environ.get("SEED_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("SEED_PASSWORD"))
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    for flag in ("name", "email", "password"):
        if not getattr(args, flag):
            print(f"Error: --{flag} or SEED_{flag.upper()} environment variable required")
            sys.exit(1)

    if not os.environ.get("DATABASE_URL") and not os.environ.get("DB_HOST"):
        os.environ["USE_MEMORY_STORE"] = "true"
        os.environ.setdefault("SHARED_FS_ROOT", "/tmp/elsie-seed")
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    try:
        result = asyncio.run(seed_user(args.name, args.email, args.password, args.dry_run))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created" and result.get("access_token"):
        print(f"  Access Token: {result['access_token'][:50]}...")


if __name__ == "__main__":
    main()
