#!/usr/bin/env python3
"""Create or promote an admin user.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=changeme123 ADMIN_PHONE=5550001111 \
        python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@example.com --password changeme123 \
        --phone 5550001111 --name "Site Admin"

Environment Variables:
    ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_PHONE, ADMIN_NAME: defaults for the flags
    DATABASE_URL: PostgreSQL connection string; without it the memory store is
        used and SHARED_FS_ROOT must point at its snapshot directory
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


async def bootstrap_admin(
    runtime,
    *,
    email: str,
    password: str,
    phone_number: int,
    name: str = "Administrator",
    dry_run: bool = False,
) -> dict:
    """Create the admin, or promote the existing user with that email.

    Returns a dict with ``user_id``, ``email`` and ``status`` (``created``,
    ``promoted``, ``already_admin`` or ``dry_run``).
    """
    from authgate.service.validation import normalize_email
    from authgate.storage.models import Role

    email = normalize_email(email)
    existing = runtime.store.find_matching({"email": email})
    if existing:
        user = existing[0]
        if user.role == Role.ADMIN:
            return {"user_id": user.id, "email": email, "status": "already_admin"}
        if dry_run:
            return {"user_id": user.id, "email": email, "status": "dry_run"}
        runtime.store.update_by_id(user.id, {"role": Role.ADMIN, "is_active": True})
        return {"user_id": user.id, "email": email, "status": "promoted"}

    if dry_run:
        return {"user_id": None, "email": email, "status": "dry_run"}

    user = await runtime.auth.register(
        {
            "name": name,
            "email": email,
            "password": password,
            "role": Role.ADMIN.value,
            "phoneNumber": phone_number,
        }
    )
    return {"user_id": user.id, "email": email, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for authgate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"))
    parser.add_argument("--phone", type=int, default=os.environ.get("ADMIN_PHONE"))
    parser.add_argument("--name", default=os.environ.get("ADMIN_NAME", "Administrator"))
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    missing = [flag for flag, value in (("--email", args.email), ("--password", args.password), ("--phone", args.phone)) if not value]
    if missing:
        print(f"Error: {', '.join(missing)} required (or the matching ADMIN_* env var)")
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        if not os.environ.get("SHARED_FS_ROOT"):
            print("Error: set DATABASE_URL, or SHARED_FS_ROOT so the memory store persists")
            sys.exit(1)
        os.environ["USE_MEMORY_STORE"] = "true"
    else:
        os.environ.setdefault("USE_MEMORY_STORE", "false")
    # Sessions are not touched here
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    from authgate.service.errors import ServiceError
    from authgate.service.runtime import get_runtime

    try:
        result = asyncio.run(
            bootstrap_admin(
                get_runtime(),
                email=args.email,
                password=args.password,
                phone_number=int(args.phone),
                name=args.name,
                dry_run=args.dry_run,
            )
        )
    except ServiceError as exc:
        print(f"Error: {exc.message}")
        sys.exit(1)

    status = result["status"]
    if status == "created":
        print(f"Created admin user {result['email']} (id: {result['user_id']})")
    elif status == "promoted":
        print(f"Promoted {result['email']} to admin (id: {result['user_id']})")
    elif status == "already_admin":
        print(f"{result['email']} is already an admin; nothing to do")
    else:
        print(f"[DRY RUN] would create or promote {result['email']}")


if __name__ == "__main__":
    main()
