"""User model for authentication and authorization."""

from datetime import datetime
from enum import Enum

from pydantic import EmailStr
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from library_api.models.base import utc_now


class UserRole(str, Enum):
    """User roles for route access."""

    ADMIN = "admin"
    READER = "reader"


class UserBase(SQLModel):
    """Base user fields."""

    name: str = Field(max_length=100)
    email: str = Field(unique=True, index=True)
    role: UserRole = Field(default=UserRole.READER)
    mailing: bool = Field(default=False)


class User(UserBase, table=True):
    """User database model."""

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    hashed_password: str
    refresh_token: str | None = Field(default=None, index=True)
    refresh_token_expires_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class UserCreate(SQLModel):
    """Schema for registering a user."""

    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)
    mailing: bool = False


class UserRead(SQLModel):
    """Schema for reading a user."""

    id: int
    name: str
    email: str
    role: UserRole
    mailing: bool
    created_at: datetime
