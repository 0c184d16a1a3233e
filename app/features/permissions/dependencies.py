"""
Permission checking dependencies.

Implements:
- Subject construction for the current user and for a target user
- FastAPI dependencies for route protection (role and permission expressions)
- Audit logging helpers
"""
from typing import Dict, Any, Optional
from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.permissions.models import AuditLog
from app.features.permissions.subject import Subject
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Subjects
# ============================================================================

async def get_subject(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Subject:
    """The current user's Subject, scoped to their current group."""
    return Subject.for_user(db, current_user)


async def get_target_user(
    user_id: str,
    db: AsyncSession = Depends(get_db)
) -> User:
    """The user named in the path, or 404."""
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user


async def get_target_subject(
    db: AsyncSession = Depends(get_db),
    target: User = Depends(get_target_user)
) -> Subject:
    """Subject for the user named in the path."""
    return Subject.for_user(db, target)


# ============================================================================
# FastAPI Dependencies
# ============================================================================

def require_role(roles: str, group_id: Optional[str] = None, only_current_group: bool = False):
    """
    FastAPI dependency to require a role.

    Usage:
        @router.get("/claims")
        async def list_claims(
            user: User = Depends(require_role("billing-manager|admin"))
        ):
            pass

    Args:
        roles: Role expression, e.g. "admin|editor" or "billing.*"
        group_id: Group to check in (uses the user's current group if not provided)
        only_current_group: Ignore roles inherited from parent groups

    Returns:
        Dependency function that returns the current user if they hold the role

    Raises:
        HTTPException: 403 if user doesn't hold a matching role
    """
    async def role_dependency(
        current_user: User = Depends(get_current_user),
        subject: Subject = Depends(get_subject)
    ) -> User:
        if not await subject.is_(roles, group_id, only_current_group):
            log.debug(f"User {current_user.id} denied: requires role {roles}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires role {roles}"
            )
        return current_user

    return role_dependency


def require_permission(permissions: str, group_id: Optional[str] = None):
    """
    FastAPI dependency to require a permission.

    Usage:
        @router.post("/claims")
        async def create_claim(
            user: User = Depends(require_permission("claims.create"))
        ):
            # User has permission to create claims
            pass

    Args:
        permissions: Permission expression, e.g. "claims.create|claims.*"
        group_id: Group to check in (uses the user's current group if not provided)

    Returns:
        Dependency function that returns the current user if they have permission

    Raises:
        HTTPException: 403 if user doesn't have permission
    """
    async def permission_dependency(
        current_user: User = Depends(get_current_user),
        subject: Subject = Depends(get_subject)
    ) -> User:
        # System admins have all permissions
        if current_user.is_admin:
            return current_user

        if not await subject.can(permissions, group_id):
            log.debug(f"User {current_user.id} denied: requires permission {permissions}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires {permissions}"
            )
        return current_user

    return permission_dependency


# ============================================================================
# Audit Logging
# ============================================================================

def request_origin(request: Request) -> Dict[str, Optional[str]]:
    """Client address and user agent for an audit entry."""
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    group_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> AuditLog:
    """
    Create an audit log entry in the request's transaction.

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "create", "attach_role", "detach_permission")
        resource_type: Type of resource (e.g., "role", "permission", "user")
        resource_id: ID or slug of the resource
        group_id: Group context
        details: Additional details
        ip_address: Client IP address
        user_agent: Client user agent

    Returns:
        Created AuditLog object
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        group_id=group_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent
    )

    db.add(audit_log)
    await db.flush()

    log.info(
        f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id} group={group_id}"
    )

    return audit_log
