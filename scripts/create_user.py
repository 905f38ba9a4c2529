#!/usr/bin/env python3
"""Create a user account directly against the configured database.

Usage:
    python scripts/create_user.py alice 'S3curePassword'
    python scripts/create_user.py alice 'S3curePassword' --admin

    # Password from the environment instead of the command line:
    SCROB_PASSWORD='S3curePassword' python scripts/create_user.py alice

Without --admin/--no-admin the usual rule applies: the first account on an
empty database becomes an administrator.

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
    SCROB_PASSWORD: Password, when not given as an argument
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def create_user(
    runtime, username: str, password: str, is_admin: Optional[bool] = None
) -> dict:
    user = await runtime.auth.create_user(username, password, is_admin=is_admin)
    return {"user_id": user.id, "username": user.username, "is_admin": user.is_admin}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create a Scrob user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("username")
    parser.add_argument(
        "password",
        nargs="?",
        default=os.environ.get("SCROB_PASSWORD"),
        help="Password (or set SCROB_PASSWORD env var)",
    )
    admin = parser.add_mutually_exclusive_group()
    admin.add_argument("--admin", dest="is_admin", action="store_true", default=None)
    admin.add_argument("--no-admin", dest="is_admin", action="store_false")
    return parser


def main(argv: Optional[Sequence[str]] = None, runtime=None) -> int:
    args = build_parser().parse_args(argv)
    if not args.password:
        print("Error: password argument or SCROB_PASSWORD environment variable required")
        return 1

    from scrob.service.errors import ServiceError
    from scrob.service.runtime import Runtime

    owns_runtime = runtime is None
    runtime = runtime or Runtime()
    try:
        result = asyncio.run(
            create_user(runtime, args.username, args.password, args.is_admin)
        )
    except ServiceError as exc:
        print(f"Error: {exc.message}")
        return 1
    finally:
        if owns_runtime:
            runtime.close()

    print(
        f"User '{result['username']}' created successfully "
        f"(id: {result['user_id']}, admin: {str(result['is_admin']).lower()})"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
