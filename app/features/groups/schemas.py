"""
Pydantic schemas for group-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field


class GroupBase(BaseModel):
    """Base group schema."""
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=1000)


class GroupCreate(GroupBase):
    """Schema for creating a group (admin only). Omit parent_id for a root group."""
    parent_id: str | None = Field(None, description="Parent group ULID")


class GroupResponse(GroupBase):
    """Schema for group responses."""
    id: str
    parent_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class GroupChainResponse(BaseModel):
    """A group's ancestry as the permission engine sees it."""
    group_id: str
    chain: list[str] = Field(..., description="The group followed by its ancestors, nearest first")
    root_group_id: str
