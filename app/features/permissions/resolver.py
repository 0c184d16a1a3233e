"""
Role and permission lookups for one user.

The resolver owns the user's role and permission caches. They only ever hold
the default view (current group, inherited roles included, all permissions);
the grant engine clears them after every write.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions import store
from app.features.permissions.hierarchy import GroupHierarchyCache
from app.features.permissions.schemas import PermissionFilter, PermissionResponse, RoleResponse
from app.features.permissions.slugs import SlugExpression
from app.utils import get_logger


log = get_logger(__name__)


class AuthorizationResolver:
    """Answers is() / can() and lists a user's roles and permissions."""

    def __init__(
        self,
        db: AsyncSession,
        user_id: str,
        group_id: str,
        groups: GroupHierarchyCache
    ):
        self.db = db
        self.user_id = user_id
        self.group_id = group_id
        self.groups = groups

        # Derived state, rebuilt from the store when empty
        self._user_roles: list[RoleResponse] | None = None
        self._user_permissions: list[PermissionResponse] | None = None

    async def group_ids_for(self, group_id: str, only_current_group: bool = False) -> list[str]:
        """The groups whose role assignments apply to ``group_id``."""
        if only_current_group:
            return [group_id]
        return await self.groups.resolve_group_chain(group_id)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def get_roles(self, group_id: str | None = None, only_current_group: bool = False) -> list[RoleResponse]:
        """
        Roles the user holds in ``group_id``.

        Roles held on any ancestor group are included unless
        ``only_current_group`` is set. Only the default call (current group,
        ancestors included) is served from the cache.
        """
        if group_id is None:
            group_id = self.group_id
        cacheable = group_id == self.group_id and not only_current_group

        if cacheable and self._user_roles:
            return list(self._user_roles)

        group_ids = await self.group_ids_for(group_id, only_current_group)
        root_group_id = await self.groups.resolve_root_group(group_id)
        roles = await store.select_user_roles(self.db, self.user_id, group_ids, root_group_id)

        if cacheable:
            log.debug(f"Cached {len(roles)} roles for user {self.user_id} in group {group_id}")
            self._user_roles = roles
        return list(roles)

    async def is_(self, roles: str, group_id: str | None = None, only_current_group: bool = False) -> bool:
        """
        Whether the user holds a role matching ``roles``.

        ``roles`` is a single fully- or partially-qualified slug or a
        pipe-separated list of them. Queries the store directly; the role
        cache is not consulted.
        """
        if group_id is None:
            group_id = self.group_id

        expression = SlugExpression(roles)
        group_ids = await self.group_ids_for(group_id, only_current_group)
        held = await store.user_role_exists(self.db, self.user_id, group_ids, expression)

        log.debug(f"is({expression.expression!r}) for user {self.user_id} in {group_ids}: {held}")
        return held

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def get_permissions(self, filter: PermissionFilter | str = PermissionFilter.ALL) -> list[PermissionResponse]:
        """
        The user's permissions in the current group.

        'all' : every permission. This is the default and the only cached view
        'role' : only permissions materialized from a role
        'explicit' : only permissions set directly on the user
        """
        filter = PermissionFilter(filter)

        if filter == PermissionFilter.ALL and self._user_permissions:
            return list(self._user_permissions)

        added_on_user = {
            PermissionFilter.ALL: None,
            PermissionFilter.ROLE: False,
            PermissionFilter.EXPLICIT: True,
        }[filter]
        rows = await store.select_user_permissions(self.db, self.user_id, self.group_id, added_on_user)
        permissions = [PermissionResponse.model_validate(row) for row in rows]

        if filter == PermissionFilter.ALL:
            self._user_permissions = permissions
        return list(permissions)

    async def can(self, permissions: str, group_id: str | None = None) -> bool:
        """
        Whether the user has a permission matching ``permissions`` in exactly
        ``group_id``.

        Inherited permissions are materialized per group when roles are
        attached, so no group chain is walked here.
        """
        if not group_id:
            group_id = self.group_id

        expression = SlugExpression(permissions)
        allowed = await store.user_permission_exists(self.db, self.user_id, group_id, expression)

        log.debug(f"can({expression.expression!r}) for user {self.user_id} in {group_id}: {allowed}")
        return allowed

    # ------------------------------------------------------------------
    # Cache invalidation
    # ------------------------------------------------------------------

    def invalidate_role_cache(self) -> None:
        self._user_roles = None

    def invalidate_permission_cache(self) -> None:
        self._user_permissions = None
