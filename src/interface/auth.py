"""Caller identity: signed bearer tokens carrying a user id and role."""

import logging
from collections.abc import Awaitable, Callable

from fastapi import Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pydantic import BaseModel, ValidationError

from src.core.config import settings
from src.core.errors import NotAuthorizedError
from src.domain.user import UserRole


logger = logging.getLogger(__name__)

serializer = URLSafeTimedSerializer(str(settings.secret_key), salt="caller-identity")


class Identity(BaseModel):
    """Authenticated caller as asserted by the identity provider."""

    user_id: str
    role: UserRole


def issue_token(*, user_id: str, role: UserRole) -> str:
    """Sign an identity token for a user."""
    return serializer.dumps({"user_id": str(user_id), "role": str(role)})


def read_token(token: str) -> Identity:
    """Verify a token's signature and age.

    Raises:
        NotAuthorizedError: If the token is tampered, expired or malformed
    """
    try:
        payload = serializer.loads(token, max_age=settings.identity_token_max_age_seconds)
        return Identity(**payload)
    except SignatureExpired as err:
        raise NotAuthorizedError("Identity token expired", authenticated=False) from err
    except (BadSignature, ValidationError, TypeError) as err:
        raise NotAuthorizedError("Invalid identity token", authenticated=False) from err


async def get_identity(request: Request) -> Identity:
    """FastAPI dependency resolving the caller from ``Authorization: Bearer <token>``."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        logger.warning("auth_missing_token", extra={"path": request.url.path})
        raise NotAuthorizedError("Authentication required", authenticated=False)

    try:
        return read_token(token.strip())
    except NotAuthorizedError:
        logger.warning("auth_invalid_token", extra={"path": request.url.path})
        raise


def require_role(*roles: UserRole) -> Callable[[Request], Awaitable[Identity]]:
    """Build a dependency that admits only callers holding one of ``roles``."""

    async def _dependency(request: Request) -> Identity:
        identity = await get_identity(request)
        if identity.role not in roles:
            logger.warning(
                "auth_role_denied",
                extra={"path": request.url.path, "role": str(identity.role), "user_id": identity.user_id},
            )
            raise NotAuthorizedError(f"This action requires role: {', '.join(roles)}")
        return identity

    return _dependency
