"""
The role/permission surface of one user.

A Subject wires a group hierarchy cache, a resolver and a grant engine for a
single user and current group. Build a fresh one per request; the caches it
holds are not shared.

Usage:
    subject = Subject.for_user(db, user)
    await subject.attach_role("billing-manager")
    if await subject.can("claims.read|claims.*"):
        ...
"""
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.groups.hierarchy import configured_hierarchy
from app.features.permissions.grants import GrantEngine
from app.features.permissions.hierarchy import GroupHierarchy, GroupHierarchyCache
from app.features.permissions.resolver import AuthorizationResolver
from app.features.permissions.schemas import PermissionFilter, PermissionResponse, RoleResponse


class Subject:

    def __init__(
        self,
        db: AsyncSession,
        user_id: str,
        current_group_id: str | None = None,
        hierarchy: GroupHierarchy | None = None
    ):
        self.user_id = user_id
        self.groups = GroupHierarchyCache(hierarchy)
        self.resolver = AuthorizationResolver(
            db, user_id, current_group_id or config.DEFAULT_GROUP_ID, self.groups
        )
        self.grants = GrantEngine(self.resolver)

    @classmethod
    def for_user(cls, db: AsyncSession, user) -> "Subject":
        """Subject for a User row, in the user's current group."""
        return cls(db, user.id, user.current_group_id, configured_hierarchy(db))

    @property
    def group_id(self) -> str:
        return self.resolver.group_id

    # Checks

    async def is_(self, roles: str, group_id: str | None = None, only_current_group: bool = False) -> bool:
        return await self.resolver.is_(roles, group_id, only_current_group)

    async def can(self, permissions: str, group_id: str | None = None) -> bool:
        return await self.resolver.can(permissions, group_id)

    async def get_roles(self, group_id: str | None = None, only_current_group: bool = False) -> list[RoleResponse]:
        return await self.resolver.get_roles(group_id, only_current_group)

    async def get_permissions(self, filter: PermissionFilter | str = PermissionFilter.ALL) -> list[PermissionResponse]:
        return await self.resolver.get_permissions(filter)

    # Writes

    async def attach_role(self, role_slug: str, group_id: str | None = None) -> RoleResponse:
        return await self.grants.attach_role(role_slug, group_id)

    async def detach_role(self, role_slug: str, group_id: str | None = None) -> bool:
        return await self.grants.detach_role(role_slug, group_id)

    async def attach_permission(self, permission_slug: str) -> bool:
        return await self.grants.attach_permission(permission_slug)

    async def detach_permission(self, permission_slug: str) -> bool:
        return await self.grants.detach_permission(permission_slug)

    async def unique_permissions_for_role(self, role_slug: str, group_id: str | None = None) -> list[PermissionResponse]:
        return await self.grants.unique_permissions_for_role(role_slug, group_id or self.group_id)
