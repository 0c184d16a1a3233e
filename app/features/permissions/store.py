"""
Queries over the role/permission relations.

Stateless: every function takes the session it runs on. Caching and the
decision of what to write live in the resolver and the grant engine.
"""
from typing import Iterable
from sqlalchemy import select, delete, insert, update, exists
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import (
    Permission,
    Role,
    RoleCustom,
    role_permission,
    user_role,
    user_permission,
)
from app.features.permissions.schemas import RoleKind, RoleResponse
from app.features.permissions.slugs import SlugExpression


# ============================================================================
# Catalog
# ============================================================================

async def find_role(db: AsyncSession, slug: str) -> Role | None:
    return await db.get(Role, slug)


async def find_custom_role(db: AsyncSession, slug: str, root_group_id: str) -> RoleCustom | None:
    """Custom roles live on the root group only."""
    return await db.get(RoleCustom, (root_group_id, slug))


async def permission_exists(db: AsyncSession, slug: str) -> bool:
    result = await db.execute(select(exists().where(Permission.slug == slug)))
    return bool(result.scalar())


async def select_role_permissions(
    db: AsyncSession,
    role_slug: str,
    group_ids: Iterable[str]
) -> list[Permission]:
    """Permissions the role grants in any of the given groups."""
    stmt = (
        select(Permission)
        .join(role_permission, role_permission.c.permissions_slug == Permission.slug)
        .where(
            role_permission.c.roles_slug == role_slug,
            role_permission.c.group_id.in_(list(group_ids))
        )
        .distinct()
        .order_by(Permission.slug)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def select_role_permission_slugs(
    db: AsyncSession,
    role_slugs: Iterable[str],
    group_ids: Iterable[str]
) -> set[str]:
    """Union of permission slugs granted by any of the roles in any of the groups."""
    role_slugs = list(role_slugs)
    if not role_slugs:
        return set()

    stmt = select(role_permission.c.permissions_slug).where(
        role_permission.c.roles_slug.in_(role_slugs),
        role_permission.c.group_id.in_(list(group_ids))
    )
    result = await db.execute(stmt)
    return set(result.scalars().all())


# ============================================================================
# User roles
# ============================================================================

async def select_user_roles(
    db: AsyncSession,
    user_id: str,
    group_ids: Iterable[str],
    root_group_id: str
) -> list[RoleResponse]:
    """
    Roles the user holds in any of the groups.

    Global and custom roles are looked up separately and concatenated; the
    two catalogs are expected not to share slugs.
    """
    group_ids = list(group_ids)

    global_stmt = (
        select(Role.slug, Role.name, Role.description, user_role.c.group_id)
        .join(user_role, Role.slug == user_role.c.roles_slug)
        .where(
            user_role.c.user_id == user_id,
            user_role.c.group_id.in_(group_ids)
        )
        .order_by(user_role.c.group_id, Role.slug)
    )
    custom_stmt = (
        select(RoleCustom.slug, RoleCustom.name, RoleCustom.description, user_role.c.group_id)
        .join(user_role, RoleCustom.slug == user_role.c.roles_slug)
        .where(
            user_role.c.user_id == user_id,
            user_role.c.group_id.in_(group_ids),
            RoleCustom.group_id == root_group_id
        )
        .order_by(user_role.c.group_id, RoleCustom.slug)
    )

    roles = []
    for kind, stmt in ((RoleKind.GLOBAL, global_stmt), (RoleKind.CUSTOM, custom_stmt)):
        result = await db.execute(stmt)
        roles.extend(RoleResponse(kind=kind, **row) for row in result.mappings())
    return roles


async def user_role_exists(
    db: AsyncSession,
    user_id: str,
    group_ids: Iterable[str],
    expression: SlugExpression
) -> bool:
    stmt = select(
        exists().where(
            user_role.c.user_id == user_id,
            user_role.c.group_id.in_(list(group_ids)),
            expression.clause(user_role.c.roles_slug)
        )
    )
    result = await db.execute(stmt)
    return bool(result.scalar())


async def insert_user_role(db: AsyncSession, user_id: str, group_id: str, role_slug: str) -> None:
    await db.execute(
        insert(user_role).values(user_id=user_id, group_id=group_id, roles_slug=role_slug)
    )


async def delete_user_role(db: AsyncSession, user_id: str, group_id: str, role_slug: str) -> int:
    result = await db.execute(
        delete(user_role).where(
            user_role.c.user_id == user_id,
            user_role.c.group_id == group_id,
            user_role.c.roles_slug == role_slug
        )
    )
    return result.rowcount


# ============================================================================
# User permissions
# ============================================================================

async def select_user_permissions(
    db: AsyncSession,
    user_id: str,
    group_id: str,
    added_on_user: bool | None = None
) -> list[Permission]:
    """
    The user's permissions in a group joined to the catalog.

    added_on_user narrows to explicit (True) or role-materialized (False) rows.
    """
    stmt = (
        select(Permission)
        .join(user_permission, user_permission.c.permissions_slug == Permission.slug)
        .where(
            user_permission.c.user_id == user_id,
            user_permission.c.group_id == group_id
        )
        .order_by(Permission.slug)
    )
    if added_on_user is not None:
        stmt = stmt.where(user_permission.c.added_on_user == added_on_user)

    result = await db.execute(stmt)
    return list(result.scalars().all())


async def select_user_permission_slugs(
    db: AsyncSession,
    user_id: str,
    group_id: str,
    added_on_user: bool | None = None
) -> set[str]:
    stmt = select(user_permission.c.permissions_slug).where(
        user_permission.c.user_id == user_id,
        user_permission.c.group_id == group_id
    )
    if added_on_user is not None:
        stmt = stmt.where(user_permission.c.added_on_user == added_on_user)

    result = await db.execute(stmt)
    return set(result.scalars().all())


async def get_user_permission(db: AsyncSession, user_id: str, group_id: str, permission_slug: str):
    """The raw user_permission row, or None."""
    result = await db.execute(
        select(user_permission).where(
            user_permission.c.user_id == user_id,
            user_permission.c.group_id == group_id,
            user_permission.c.permissions_slug == permission_slug
        )
    )
    return result.first()


async def user_permission_exists(
    db: AsyncSession,
    user_id: str,
    group_id: str,
    expression: SlugExpression
) -> bool:
    stmt = select(
        exists().where(
            user_permission.c.user_id == user_id,
            user_permission.c.group_id == group_id,
            expression.clause(user_permission.c.permissions_slug)
        )
    )
    result = await db.execute(stmt)
    return bool(result.scalar())


async def insert_user_permissions(
    db: AsyncSession,
    user_id: str,
    group_id: str,
    permission_slugs: Iterable[str],
    added_on_user: bool = False
) -> int:
    rows = [
        {
            "user_id": user_id,
            "group_id": group_id,
            "permissions_slug": slug,
            "added_on_user": added_on_user,
        }
        for slug in permission_slugs
    ]
    if rows:
        await db.execute(insert(user_permission), rows)
    return len(rows)


async def delete_role_permissions_from_user(
    db: AsyncSession,
    user_id: str,
    group_id: str,
    permission_slugs: Iterable[str]
) -> int:
    """Delete materialized rows. Explicit grants are never touched here."""
    permission_slugs = list(permission_slugs)
    if not permission_slugs:
        return 0

    result = await db.execute(
        delete(user_permission).where(
            user_permission.c.user_id == user_id,
            user_permission.c.group_id == group_id,
            user_permission.c.permissions_slug.in_(permission_slugs),
            user_permission.c.added_on_user == False  # noqa: E712
        )
    )
    return result.rowcount


async def set_added_on_user(
    db: AsyncSession,
    user_id: str,
    group_id: str,
    permission_slug: str,
    added_on_user: bool
) -> int:
    """Flip an existing row between explicit and materialized."""
    result = await db.execute(
        update(user_permission)
        .where(
            user_permission.c.user_id == user_id,
            user_permission.c.group_id == group_id,
            user_permission.c.permissions_slug == permission_slug,
            user_permission.c.added_on_user == (not added_on_user)
        )
        .values(added_on_user=added_on_user)
    )
    return result.rowcount


async def delete_explicit_permission(
    db: AsyncSession,
    user_id: str,
    group_id: str,
    permission_slug: str
) -> int:
    result = await db.execute(
        delete(user_permission).where(
            user_permission.c.user_id == user_id,
            user_permission.c.group_id == group_id,
            user_permission.c.permissions_slug == permission_slug,
            user_permission.c.added_on_user == True  # noqa: E712
        )
    )
    return result.rowcount
