import pytest
from sqlalchemy import func, select

from app.features.permissions.models import Permission, Role, role_permission
from app.features.permissions.subject import Subject
from scripts.seed_permissions import DEFAULT_PERMISSIONS, DEFAULT_ROLES, seed_permissions, seed_roles


@pytest.mark.asyncio
async def test_seed_is_repeatable(db):
    slugs = await seed_permissions(db)
    await seed_roles(db, slugs, "0")

    # a second run adds nothing
    await seed_roles(db, await seed_permissions(db), "0")

    permissions = await db.execute(select(func.count()).select_from(Permission))
    roles = await db.execute(select(func.count()).select_from(Role))
    assert permissions.scalar() == len(DEFAULT_PERMISSIONS)
    assert roles.scalar() == len(DEFAULT_ROLES)

    grants = await db.execute(
        select(func.count()).select_from(role_permission).where(role_permission.c.roles_slug == "admin")
    )
    assert grants.scalar() == len(DEFAULT_PERMISSIONS)


@pytest.mark.asyncio
async def test_seeded_roles_work_in_default_group(db):
    await seed_roles(db, await seed_permissions(db), "0")

    subject = Subject(db, "someone")
    await subject.attach_role("auditor")

    assert await subject.can("audit.read")
    assert await subject.can("claims.*")
    assert not await subject.can("claims.approve")
