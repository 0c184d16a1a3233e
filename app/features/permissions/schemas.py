"""
Pydantic schemas for role and permission management.

``RoleResponse`` is the common view over global and custom roles; ``kind``
says which catalog the row came from.
"""
import enum
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.slugs import validate_slug


class RoleKind(str, enum.Enum):
    """Catalog a role was resolved from."""
    GLOBAL = "global"
    CUSTOM = "custom"


class PermissionFilter(str, enum.Enum):
    """Which of a user's permissions to list."""
    ALL = "all"
    ROLE = "role"  # materialized from a role
    EXPLICIT = "explicit"  # added directly on the user


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionBase(BaseModel):
    """Base permission schema."""
    slug: str = Field(..., min_length=1, max_length=255, description="Unique permission slug, e.g. 'claims.read'")
    name: Optional[str] = Field(None, max_length=255, description="Display name")
    description: Optional[str] = Field(None, max_length=1000, description="Permission description")


class PermissionCreate(PermissionBase):
    """Schema for adding a permission to the catalog."""

    @field_validator('slug')
    @classmethod
    def slug_format(cls, v: str) -> str:
        return validate_slug(v)


class PermissionResponse(PermissionBase):
    """Schema for permission response."""
    model_config = ConfigDict(from_attributes=True, frozen=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    slug: str = Field(..., min_length=1, max_length=255, description="Role slug, e.g. 'billing-manager'")
    name: Optional[str] = Field(None, max_length=255, description="Display name")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")


class RoleCreate(RoleBase):
    """Schema for creating a global role."""

    @field_validator('slug')
    @classmethod
    def slug_format(cls, v: str) -> str:
        return validate_slug(v)


class CustomRoleCreate(RoleCreate):
    """Schema for creating a custom role. Stored on the group's root group."""
    group_id: str = Field(..., description="Any group in the target tree")


class RoleResponse(RoleBase):
    """
    A role as seen by a user.

    group_id is the group the role is held in (for assignments) or defined on
    (custom catalog roles); it is None for a global catalog role.
    """
    kind: RoleKind = RoleKind.GLOBAL
    group_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)


class RolePermissionCreate(BaseModel):
    """Schema for declaring that a role grants a permission within a group."""
    group_id: str = Field(..., description="Group the grant applies to")
    role_slug: str = Field(..., description="Global or custom role slug")
    permission_slug: str = Field(..., description="Permission slug")


# ============================================================================
# Assignment Schemas
# ============================================================================

class AttachRoleRequest(BaseModel):
    """Schema for attaching a role to a user."""
    role_slug: str = Field(..., min_length=1, description="Role slug")
    group_id: Optional[str] = Field(None, description="Group (uses the user's current group if not provided)")


class AttachPermissionRequest(BaseModel):
    """Schema for attaching an explicit permission to a user in their current group."""
    permission_slug: str = Field(..., min_length=1, description="Permission slug")


class AssignmentResult(BaseModel):
    """Outcome of an attach/detach call."""
    changed: bool
    message: str


# ============================================================================
# Check Schemas
# ============================================================================

class CheckRequest(BaseModel):
    """
    Schema for checking the current user's roles and/or permissions.

    Expressions accept one slug, a partial slug ("claims.*"), or a
    pipe-separated list of them.
    """
    roles: Optional[str] = Field(None, description="Role expression for is()")
    permissions: Optional[str] = Field(None, description="Permission expression for can()")
    group_id: Optional[str] = Field(None, description="Group (uses current if not provided)")
    only_current_group: bool = Field(False, description="Ignore roles inherited from parent groups")


class CheckResponse(BaseModel):
    """Schema for check response. Fields are None when not requested."""
    is_: Optional[bool] = Field(None, alias="is")
    can: Optional[bool] = None

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    group_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
