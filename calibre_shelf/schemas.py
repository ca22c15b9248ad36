"""
Request and response models shared by the auth and admin routers.

JSON keys are camelCase (isAdmin, createdAt) to match the frontend stores.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class UserOut(BaseModel):
    """Public projection of a user account; never carries the password hash."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    id: str
    username: str
    name: str | None = None
    email: str
    is_admin: bool = False
    is_approved: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoginBody(BaseModel):
    """Request body for username/password login. Fields are checked in the route."""
    username: str | None = None
    password: str | None = None


class LoginResponse(BaseModel):
    user: UserOut
    token: str


class MessageResponse(BaseModel):
    message: str
