"""User service for buyer and wellwisher accounts."""

import logging

from src.core import db_client
from src.core.config import constants
from src.core.db_client import sanitize_param
from src.core.errors import ErrorCode, InvalidInputError, NotFoundError
from src.core.logging import span
from src.domain.create_models import UserCreate
from src.domain.user import User, UserRole, UserStatus


logger = logging.getLogger(__name__)


async def create_user(*, user: UserCreate) -> User:
    """Register a user.

    Raises:
        InvalidInputError: If the email is already registered
    """
    with span("user_service.create_user"):
        existing_user = await db_client.get_first_record(
            collection="users",
            filter_query=f'email = "{sanitize_param(user.email)}"',
        )
        if existing_user:
            msg = f"User with email {user.email} already exists"
            logger.warning(msg)
            raise InvalidInputError(msg)

        record = await db_client.create_record(
            collection="users",
            data={
                "name": user.name,
                "email": user.email,
                "role": user.role,
                "user_type": user.user_type,
                "status": UserStatus.ACTIVE,
            },
        )
        logger.info("Created %s user %s", user.role, record["id"])
        return User(**record)


async def get_user(*, user_id: str) -> User:
    """Fetch a user by ID.

    Raises:
        NotFoundError: If no such user exists
    """
    try:
        record = await db_client.get_record(collection="users", record_id=user_id)
    except db_client.RecordNotFoundError as e:
        raise NotFoundError(f"User {user_id} not found", code=ErrorCode.ERR_USER_NOT_FOUND) from e
    return User(**record)


async def list_active_wellwishers() -> list[User]:
    """Return the assignment pool, earliest-registered first."""
    with span("user_service.list_active_wellwishers"):
        users: list[User] = []
        page = 1
        while True:
            records = await db_client.list_records(
                collection="users",
                filter_query=f'role = "{UserRole.WELLWISHER}" && status = "{UserStatus.ACTIVE}"',
                sort="+created,+id",
                page=page,
                per_page=constants.MAX_PAGE_SIZE,
            )
            users.extend(User(**record) for record in records)
            if len(records) < constants.MAX_PAGE_SIZE:
                return users
            page += 1
