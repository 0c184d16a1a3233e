"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)


class UserCreate(UserBase):
    """Schema for creating a new user (admin only)."""
    is_admin: bool = False
    current_group_id: str | None = Field(None, description="Group the user starts in")


class CurrentGroupUpdate(BaseModel):
    """Schema for switching the current user's group."""
    group_id: str = Field(..., min_length=1)


class UserResponse(UserBase):
    """Schema for user responses."""
    id: str
    is_active: bool
    is_admin: bool
    current_group_id: str | None = None
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserPublic(BaseModel):
    """Public user information (limited fields)."""
    id: str
    name: str

    model_config = {"from_attributes": True}
