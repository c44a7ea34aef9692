"""User domain models and enums."""

import re
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


# Constants for validation
MAX_NAME_LENGTH = 100


class UserRole(StrEnum):
    """Role carried by a caller identity."""

    WELLWISHER = "wellwisher"
    ADMIN = "admin"
    BUYER = "buyer"


class UserStatus(StrEnum):
    """User account status."""

    ACTIVE = "active"
    DISABLED = "disabled"


class UserType(StrEnum):
    """Kind of buyer account."""

    INDIVIDUAL = "individual"
    COMPANY = "company"


class User(BaseModel):
    """User data transfer object."""

    id: str = Field(..., description="Unique user ID")
    name: str = Field(..., description="Display name of the user")
    email: str = Field(..., description="Email address")
    role: UserRole = Field(default=UserRole.BUYER, description="Role of the user")
    user_type: UserType = Field(default=UserType.INDIVIDUAL, description="Individual or company account")
    status: UserStatus = Field(default=UserStatus.ACTIVE, description="User account status")
    created: datetime = Field(..., description="Registration timestamp; orders the worker pool")

    @field_validator("name")
    @classmethod
    def validate_name_usable(cls, v: str) -> str:
        """Validate name is usable - allows Unicode letters, spaces, hyphens, apostrophes, periods."""
        v = v.strip()

        if not v:
            raise ValueError("Name cannot be empty")

        if len(v) > MAX_NAME_LENGTH:
            raise ValueError(f"Name too long (max {MAX_NAME_LENGTH} characters)")

        if not re.match(r"^[\w\s'.&-]+$", v, re.UNICODE):
            raise ValueError("Name can only contain letters, spaces, hyphens, apostrophes, and periods")

        return v
