"""Authentication request/response schemas."""

from pydantic import BaseModel, EmailStr


class LoginRequest(BaseModel):
    """Login request schema."""

    email: EmailStr
    password: str


class MessageResponse(BaseModel):
    """Plain acknowledgement."""

    message: str


class MeResponse(BaseModel):
    """Current user as seen through the access token and the store."""

    id: int
    name: str
    email: str
    role: str
    mailing: bool
