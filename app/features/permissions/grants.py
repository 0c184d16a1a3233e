"""
Attaching and detaching roles and permissions.

Permissions granted through a role are materialized into user_permission at
attach time so can() is a single lookup. A role only materializes (and on
detach only removes) the permissions nothing else explains: no other role
the user holds grants them and they were not set explicitly on the user.
The same computation drives both directions, so attach followed by detach
leaves the user's permissions exactly as they were.
"""
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError

from app.features.permissions import store
from app.features.permissions.exceptions import UnknownRole
from app.features.permissions.resolver import AuthorizationResolver
from app.features.permissions.schemas import PermissionResponse, RoleKind, RoleResponse
from app.features.permissions.slugs import validate_slug
from app.utils import get_logger


log = get_logger(__name__)


class GrantEngine:
    """Writes role and permission assignments for the resolver's user."""

    def __init__(self, resolver: AuthorizationResolver):
        self.resolver = resolver

    @property
    def db(self):
        return self.resolver.db

    @property
    def user_id(self) -> str:
        return self.resolver.user_id

    @asynccontextmanager
    async def _atomic(self):
        """
        A savepoint around a multi-row write. The session autobegins its
        transaction when none is open; committing that is left to the caller.
        """
        async with self.db.begin_nested():
            yield

    async def find_role(self, role_slug: str, group_id: str) -> RoleResponse:
        """Resolve a slug against global roles, then the root group's custom roles."""
        role = await store.find_role(self.db, role_slug)
        if role is not None:
            return RoleResponse(slug=role.slug, name=role.name, description=role.description,
                                kind=RoleKind.GLOBAL, group_id=group_id)

        # All custom roles are defined on the root group
        root_group_id = await self.resolver.groups.resolve_root_group(group_id)
        custom = await store.find_custom_role(self.db, role_slug, root_group_id)
        if custom is not None:
            return RoleResponse(slug=custom.slug, name=custom.name, description=custom.description,
                                kind=RoleKind.CUSTOM, group_id=group_id)

        raise UnknownRole(role_slug, group_id)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def attach_role(self, role_slug: str, group_id: str | None = None) -> RoleResponse:
        """
        Attach a role to the user in ``group_id``. Does nothing if the user
        already holds the role in that exact group.

        Raises:
            UnknownRole: no global or custom role has this slug
        """
        if group_id is None:
            group_id = self.resolver.group_id

        role = await self.find_role(role_slug, group_id)

        # Only the exact group is checked: holding the role on a parent group
        # does not stop it from being attached to a subgroup as well.
        if await self.resolver.is_(role_slug, group_id, only_current_group=True):
            return role

        inserted = 0
        try:
            async with self._atomic():
                try:
                    async with self.db.begin_nested():
                        await store.insert_user_role(self.db, self.user_id, group_id, role_slug)
                except IntegrityError:
                    # Only a row attached concurrently between the check and
                    # the insert is tolerated; anything else propagates.
                    if not await self.resolver.is_(role_slug, group_id, only_current_group=True):
                        raise
                    log.warning(f"Role {role_slug} already attached to user {self.user_id} in group {group_id}")
                    return role

                inserted = await self._add_permissions_for_role(role_slug, group_id)
        finally:
            self.resolver.invalidate_role_cache()
            if inserted:
                self.resolver.invalidate_permission_cache()

        log.info(f"Attached role {role_slug} to user {self.user_id} in group {group_id} ({inserted} permissions)")
        return role

    async def _add_permissions_for_role(self, role_slug: str, group_id: str) -> int:
        new_permissions = await self.unique_permissions_for_role(role_slug, group_id)
        return await store.insert_user_permissions(
            self.db, self.user_id, group_id, [p.slug for p in new_permissions]
        )

    async def detach_role(self, role_slug: str, group_id: str | None = None) -> bool:
        """
        Detach a role from the user in ``group_id``.

        Returns False if the role is not among the user's roles there,
        inherited roles included. Permissions still explained by another role
        or set explicitly on the user are kept.

        Raises:
            InvalidSlugExpression: role_slug is not a single full slug
        """
        if group_id is None:
            group_id = self.resolver.group_id

        validate_slug(role_slug)

        held = {role.slug for role in await self.resolver.get_roles(group_id)}
        if role_slug not in held:
            return False

        removed = 0
        try:
            async with self._atomic():
                await store.delete_user_role(self.db, self.user_id, group_id, role_slug)

                unique = await self.unique_permissions_for_role(role_slug, group_id)
                removed = await store.delete_role_permissions_from_user(
                    self.db, self.user_id, group_id, [p.slug for p in unique]
                )
        finally:
            self.resolver.invalidate_role_cache()
            if removed:
                self.resolver.invalidate_permission_cache()

        log.info(f"Detached role {role_slug} from user {self.user_id} in group {group_id} ({removed} permissions)")
        return True

    async def unique_permissions_for_role(self, role_slug: str, group_id: str) -> list[PermissionResponse]:
        """
        Permissions of the role that are:
        a) not granted by any other role the user holds in the group, and
        b) not set explicitly on the user in the group
        """
        group_ids = await self.resolver.group_ids_for(group_id)

        # 1) the role's own permissions
        role_permissions = await store.select_role_permissions(self.db, role_slug, group_ids)

        # 2) everything explained by the user's other roles
        held = await self.resolver.get_roles(group_id, only_current_group=True)
        other_roles = {role.slug for role in held if role.slug != role_slug}
        excluded = await store.select_role_permission_slugs(self.db, other_roles, group_ids)

        # 3) and by explicit grants
        excluded |= await store.select_user_permission_slugs(self.db, self.user_id, group_id, added_on_user=True)

        return [
            PermissionResponse.model_validate(permission)
            for permission in role_permissions
            if permission.slug not in excluded
        ]

    # ------------------------------------------------------------------
    # Explicit permissions
    # ------------------------------------------------------------------

    async def attach_permission(self, permission_slug: str) -> bool:
        """
        Set a permission directly on the user in the current group.

        Permissions added this way can only be removed with
        detach_permission; detaching a role that also grants the permission
        leaves it in place. Returns False if the permission does not exist.
        """
        if not await store.permission_exists(self.db, permission_slug):
            return False

        group_id = self.resolver.group_id
        try:
            async with self._atomic():
                existing = await store.get_user_permission(self.db, self.user_id, group_id, permission_slug)
                if existing is None:
                    await store.insert_user_permissions(
                        self.db, self.user_id, group_id, [permission_slug], added_on_user=True
                    )
                elif not existing.added_on_user:
                    # Already materialized from a role; mark it explicit
                    await store.set_added_on_user(self.db, self.user_id, group_id, permission_slug, True)
        finally:
            self.resolver.invalidate_permission_cache()

        log.info(f"Attached permission {permission_slug} to user {self.user_id} in group {group_id}")
        return True

    async def detach_permission(self, permission_slug: str) -> bool:
        """
        Remove a permission set explicitly on the user in the current group.

        Permissions the user only has through a role are untouched. If one of
        the user's roles still grants the permission, the row stays as a
        role permission. Returns whether an explicit grant was removed.
        """
        group_id = self.resolver.group_id

        row = await store.get_user_permission(self.db, self.user_id, group_id, permission_slug)
        if row is None or not row.added_on_user:
            return False

        try:
            async with self._atomic():
                role_slugs = {role.slug for role in await self.resolver.get_roles(group_id, only_current_group=True)}
                group_ids = await self.resolver.group_ids_for(group_id)
                granted_by_roles = await store.select_role_permission_slugs(self.db, role_slugs, group_ids)

                if permission_slug in granted_by_roles:
                    affected = await store.set_added_on_user(self.db, self.user_id, group_id, permission_slug, False)
                else:
                    affected = await store.delete_explicit_permission(self.db, self.user_id, group_id, permission_slug)
        finally:
            self.resolver.invalidate_permission_cache()

        log.info(f"Detached permission {permission_slug} from user {self.user_id} in group {group_id}")
        return affected > 0
