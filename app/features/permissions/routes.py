"""
Permission management API routes.

Provides endpoints for the role/permission catalog, for attaching roles and
permissions to users, and for checking the caller's own roles and permissions.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select, insert, exists, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.groups.hierarchy import configured_hierarchy
from app.features.groups.models import Group
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.users.models import User
from app.features.permissions.hierarchy import GroupHierarchyCache
from app.features.permissions.models import (
    Permission,
    Role,
    RoleCustom,
    AuditLog,
    role_permission,
)
from app.features.permissions.schemas import (
    PermissionCreate,
    PermissionFilter,
    PermissionResponse,
    RoleCreate,
    CustomRoleCreate,
    RoleKind,
    RoleResponse,
    RolePermissionCreate,
    AttachRoleRequest,
    AttachPermissionRequest,
    AssignmentResult,
    CheckRequest,
    CheckResponse,
    AuditLogResponse,
    AuditLogListResponse,
)
from app.features.permissions.dependencies import (
    create_audit_log,
    get_subject,
    get_target_subject,
    request_origin,
)
from app.features.permissions.subject import Subject
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def _hierarchy_for(db: AsyncSession) -> GroupHierarchyCache:
    return GroupHierarchyCache(configured_hierarchy(db))


async def _require_group(db: AsyncSession, group_id: str) -> Group:
    group = await db.get(Group, group_id)
    if group is None:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


def _require_self_or_admin(user_id: str, current_user: User) -> None:
    # Can only view own roles and permissions unless admin
    if user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view other users' roles or permissions"
        )


# ============================================================================
# Catalog Routes
# ============================================================================

@router.get("/catalog/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List the permission catalog."""
    stmt = select(Permission).order_by(Permission.slug).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("/catalog/permissions", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    permission: PermissionCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)  # Only admins can create permissions
):
    """Add a permission to the catalog (admin only)."""
    if await db.get(Permission, permission.slug) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Permission with this slug already exists"
        )

    db_permission = Permission(**permission.model_dump())
    db.add(db_permission)
    await db.flush()

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="create",
        resource_type="permission",
        resource_id=db_permission.slug,
        details=permission.model_dump(),
        **request_origin(request)
    )
    return db_permission


@router.get("/catalog/roles", response_model=List[RoleResponse])
async def list_roles(
    group_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    List global roles, plus the custom roles of ``group_id``'s tree when a
    group is given.
    """
    result = await db.execute(select(Role).order_by(Role.slug))
    roles = [
        RoleResponse(slug=r.slug, name=r.name, description=r.description, kind=RoleKind.GLOBAL)
        for r in result.scalars()
    ]

    if group_id:
        root_group_id = await _hierarchy_for(db).resolve_root_group(group_id)
        result = await db.execute(
            select(RoleCustom).where(RoleCustom.group_id == root_group_id).order_by(RoleCustom.slug)
        )
        roles += [
            RoleResponse(slug=r.slug, name=r.name, description=r.description,
                         kind=RoleKind.CUSTOM, group_id=r.group_id)
            for r in result.scalars()
        ]
    return roles


@router.post("/catalog/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    """Create a global role (admin only)."""
    if await db.get(Role, role.slug) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role with this slug already exists"
        )

    db_role = Role(**role.model_dump())
    db.add(db_role)
    await db.flush()

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="create",
        resource_type="role",
        resource_id=db_role.slug,
        details=role.model_dump(),
        **request_origin(request)
    )
    return RoleResponse(slug=db_role.slug, name=db_role.name, description=db_role.description)


@router.post("/catalog/custom-roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_custom_role(
    role: CustomRoleCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    """Create a custom role. It is stored on the root of the given group's tree (admin only)."""
    await _require_group(db, role.group_id)
    root_group_id = await _hierarchy_for(db).resolve_root_group(role.group_id)

    if await db.get(RoleCustom, (root_group_id, role.slug)) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Custom role with this slug already exists in this group tree"
        )

    db_role = RoleCustom(group_id=root_group_id, slug=role.slug, name=role.name, description=role.description)
    db.add(db_role)
    await db.flush()

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="create",
        resource_type="custom_role",
        resource_id=db_role.slug,
        group_id=root_group_id,
        details=role.model_dump(),
        **request_origin(request)
    )
    return RoleResponse(slug=db_role.slug, name=db_role.name, description=db_role.description,
                        kind=RoleKind.CUSTOM, group_id=root_group_id)


@router.post("/catalog/role-permissions", status_code=status.HTTP_200_OK)
async def add_permission_to_role(
    assignment: RolePermissionCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    """
    Declare that a role grants a permission within a group (admin only).

    Only affects users who attach the role afterwards; existing holders keep
    the permissions materialized when they got the role.
    """
    if await db.get(Permission, assignment.permission_slug) is None:
        raise HTTPException(status_code=404, detail="Permission not found")

    root_group_id = await _hierarchy_for(db).resolve_root_group(assignment.group_id)
    if (
        await db.get(Role, assignment.role_slug) is None
        and await db.get(RoleCustom, (root_group_id, assignment.role_slug)) is None
    ):
        raise HTTPException(status_code=404, detail="Role not found")

    check_stmt = select(
        exists().where(
            role_permission.c.group_id == assignment.group_id,
            role_permission.c.roles_slug == assignment.role_slug,
            role_permission.c.permissions_slug == assignment.permission_slug
        )
    )
    if (await db.execute(check_stmt)).scalar():
        return {"message": "Permission already granted by role in this group"}

    await db.execute(
        insert(role_permission).values(
            group_id=assignment.group_id,
            roles_slug=assignment.role_slug,
            permissions_slug=assignment.permission_slug
        )
    )

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="grant_permission",
        resource_type="role",
        resource_id=assignment.role_slug,
        group_id=assignment.group_id,
        details={"permission_slug": assignment.permission_slug},
        **request_origin(request)
    )
    return {"message": "Permission added to role successfully"}


# ============================================================================
# User Assignment Routes
# ============================================================================

@router.get("/users/{user_id}/roles", response_model=List[RoleResponse])
async def get_user_roles(
    user_id: str,
    group_id: Optional[str] = None,
    only_current_group: bool = False,
    subject: Subject = Depends(get_target_subject),
    current_user: User = Depends(get_current_user)
):
    """Roles a user holds in a group, inherited ones included unless only_current_group."""
    _require_self_or_admin(user_id, current_user)
    return await subject.get_roles(group_id, only_current_group)


@router.post("/users/{user_id}/roles", response_model=RoleResponse)
async def attach_role(
    user_id: str,
    assignment: AttachRoleRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    subject: Subject = Depends(get_target_subject),
    current_user: User = Depends(get_current_admin_user)
):
    """Attach a role to a user (admin only). Unknown role slugs or groups give 404."""
    if assignment.group_id is not None:
        await _require_group(db, assignment.group_id)

    role = await subject.attach_role(assignment.role_slug, assignment.group_id)

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="attach_role",
        resource_type="user",
        resource_id=user_id,
        group_id=role.group_id,
        details={"role_slug": role.slug, "kind": role.kind.value},
        **request_origin(request)
    )
    return role


@router.delete("/users/{user_id}/roles/{role_slug}", response_model=AssignmentResult)
async def detach_role(
    user_id: str,
    role_slug: str,
    request: Request,
    group_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    subject: Subject = Depends(get_target_subject),
    current_user: User = Depends(get_current_admin_user)
):
    """Detach a role from a user (admin only)."""
    changed = await subject.detach_role(role_slug, group_id)
    if not changed:
        return AssignmentResult(changed=False, message="User does not hold this role")

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="detach_role",
        resource_type="user",
        resource_id=user_id,
        group_id=group_id or subject.group_id,
        details={"role_slug": role_slug},
        **request_origin(request)
    )
    return AssignmentResult(changed=True, message="Role detached from user successfully")


@router.get("/users/{user_id}/permissions", response_model=List[PermissionResponse])
async def get_user_permissions(
    user_id: str,
    filter: PermissionFilter = PermissionFilter.ALL,
    subject: Subject = Depends(get_target_subject),
    current_user: User = Depends(get_current_user)
):
    """A user's permissions in their current group."""
    _require_self_or_admin(user_id, current_user)
    return await subject.get_permissions(filter)


@router.post("/users/{user_id}/permissions", response_model=AssignmentResult)
async def attach_permission(
    user_id: str,
    assignment: AttachPermissionRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    subject: Subject = Depends(get_target_subject),
    current_user: User = Depends(get_current_admin_user)
):
    """Set a permission directly on a user in their current group (admin only)."""
    if not await subject.attach_permission(assignment.permission_slug):
        raise HTTPException(status_code=404, detail="Permission not found")

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="attach_permission",
        resource_type="user",
        resource_id=user_id,
        group_id=subject.group_id,
        details={"permission_slug": assignment.permission_slug},
        **request_origin(request)
    )
    return AssignmentResult(changed=True, message="Permission attached to user successfully")


@router.delete("/users/{user_id}/permissions/{permission_slug}", response_model=AssignmentResult)
async def detach_permission(
    user_id: str,
    permission_slug: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    subject: Subject = Depends(get_target_subject),
    current_user: User = Depends(get_current_admin_user)
):
    """Remove a permission set directly on a user (admin only)."""
    if not await subject.detach_permission(permission_slug):
        return AssignmentResult(changed=False, message="Permission was not set on the user")

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="detach_permission",
        resource_type="user",
        resource_id=user_id,
        group_id=subject.group_id,
        details={"permission_slug": permission_slug},
        **request_origin(request)
    )
    return AssignmentResult(changed=True, message="Permission detached from user successfully")


# ============================================================================
# Check Routes
# ============================================================================

@router.post("/check", response_model=CheckResponse)
async def check(
    check_request: CheckRequest,
    subject: Subject = Depends(get_subject)
):
    """Check the current user's roles and/or permissions."""
    if check_request.roles is None and check_request.permissions is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide roles and/or permissions to check"
        )

    response = CheckResponse()
    if check_request.roles is not None:
        response.is_ = await subject.is_(
            check_request.roles, check_request.group_id, check_request.only_current_group
        )
    if check_request.permissions is not None:
        response.can = await subject.can(check_request.permissions, check_request.group_id)
    return response


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    group_id: Optional[str] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)  # Admin only
):
    """List audit logs with optional filtering."""
    stmt = select(AuditLog)

    if group_id:
        stmt = stmt.where(AuditLog.group_id == group_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
