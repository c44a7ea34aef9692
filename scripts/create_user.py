#!/usr/bin/env python3
"""Admin script to bootstrap users and issue identity tokens.

Usage:
    python scripts/create_user.py <email> <name> [--role admin|wellwisher|buyer]
    python scripts/create_user.py --token <email>
    python scripts/create_user.py --list-wellwishers
"""

import asyncio
import logging
import sys

from src.core import db_client
from src.core.db_client import sanitize_param
from src.core.errors import InvalidInputError
from src.domain.create_models import UserCreate
from src.domain.user import UserRole
from src.interface.auth import issue_token
from src.services import user_service


logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


async def list_wellwishers() -> None:
    """List the active assignment pool."""
    for user in await user_service.list_active_wellwishers():
        logger.info(f"{user.id} - {user.name} <{user.email}>")


async def print_token(email: str) -> None:
    """Issue a fresh token for an existing user."""
    user = await db_client.get_first_record(
        collection="users",
        filter_query=f'email = "{sanitize_param(email.strip().lower())}"',
    )
    if not user:
        logger.error(f"No user with email {email}")
        sys.exit(1)

    logger.info(issue_token(user_id=user["id"], role=UserRole(user["role"])))


async def create_user(email: str, name: str, role: UserRole) -> None:
    """Create a user and print its identity token.

    Args:
        email: Email address, unique across users
        name: Display name
        role: Role to assign
    """
    try:
        user = await user_service.create_user(user=UserCreate(name=name, email=email, role=role))
    except InvalidInputError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Created {user.role} {user.id}")
    logger.info(issue_token(user_id=user.id, role=user.role))


def print_usage() -> None:
    """Print usage information."""
    logger.info(__doc__)


async def main() -> None:
    """Main entry point."""
    args = sys.argv[1:]

    if not args or "--help" in args or "-h" in args:
        print_usage()
        return

    await db_client.init_db()
    try:
        if "--list-wellwishers" in args:
            await list_wellwishers()
            return

        if args[0] == "--token":
            if len(args) < 2:
                sys.exit(1)
            await print_token(args[1])
            return

        if len(args) < 2:
            print_usage()
            sys.exit(1)

        # Parse email, name and role
        email, name = args[0], args[1]
        role = UserRole.ADMIN  # default

        if "--role" in args:
            role_index = args.index("--role")
            if role_index + 1 >= len(args) or args[role_index + 1] not in list(UserRole):
                sys.exit(1)
            role = UserRole(args[role_index + 1])

        await create_user(email, name, role)
    finally:
        await db_client.close_connection()


if __name__ == "__main__":
    asyncio.run(main())
