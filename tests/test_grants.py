import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.features.permissions.exceptions import InvalidSlugExpression, UnknownRole
from app.features.permissions.models import user_role
from app.features.permissions.schemas import RoleKind


async def role_rows(db, user_id="alice"):
    result = await db.execute(
        select(user_role.c.group_id, user_role.c.roles_slug).where(user_role.c.user_id == user_id)
    )
    return {(row.group_id, row.roles_slug) for row in result}


@pytest.mark.asyncio
async def test_attach_role_materializes_permissions(subject, permission_rows):
    role = await subject.attach_role("editor")

    assert role.slug == "editor"
    assert role.kind == RoleKind.GLOBAL
    assert role.group_id == "root"
    assert await permission_rows() == {("posts.read", False), ("posts.write", False)}
    assert await subject.can("posts.write")


@pytest.mark.asyncio
async def test_attach_role_is_idempotent(db, subject, permission_rows):
    await subject.attach_role("editor")
    once = await permission_rows()

    await subject.attach_role("editor")

    count = await db.execute(select(func.count()).select_from(user_role))
    assert count.scalar() == 1
    assert await permission_rows() == once


@pytest.mark.asyncio
async def test_attach_unknown_role_raises_and_writes_nothing(db, subject, permission_rows):
    with pytest.raises(UnknownRole) as excinfo:
        await subject.attach_role("ghost")

    assert excinfo.value.slug == "ghost"
    assert str(excinfo.value) == "There is no role with the slug: ghost"
    assert await role_rows(db) == set()
    assert await permission_rows() == set()


@pytest.mark.asyncio
async def test_attach_custom_role_from_subgroup(db, subject_for, permission_rows):
    subject = subject_for(group_id="child")

    role = await subject.attach_role("reviewer")

    assert role.kind == RoleKind.CUSTOM
    assert await role_rows(db) == {("child", "reviewer")}
    assert await permission_rows(group_id="child") == {("posts.read", False), ("users.read", False)}


@pytest.mark.asyncio
async def test_custom_roles_do_not_cross_trees(subject_for):
    with pytest.raises(UnknownRole):
        await subject_for(group_id="other").attach_role("reviewer")


@pytest.mark.asyncio
async def test_attach_role_to_explicit_group(db, subject, permission_rows):
    await subject.attach_role("editor", "child")

    assert await role_rows(db) == {("child", "editor")}
    assert await permission_rows(group_id="child") == {("posts.read", False), ("posts.write", False)}
    assert await permission_rows(group_id="root") == set()


@pytest.mark.asyncio
async def test_inherited_role(subject_for):
    parent = subject_for(group_id="root")
    await parent.attach_role("editor")

    child = subject_for(group_id="child")
    assert "editor" in {role.slug for role in await child.get_roles()}
    assert await child.is_("editor")
    assert not await child.is_("editor", only_current_group=True)


@pytest.mark.asyncio
async def test_role_held_on_parent_can_still_be_attached_to_subgroup(db, subject):
    await subject.attach_role("editor", "root")
    await subject.attach_role("editor", "child")

    assert await role_rows(db) == {("root", "editor"), ("child", "editor")}


@pytest.mark.asyncio
async def test_uniqueness_across_overlapping_roles(subject, permission_rows):
    # editor {read, write}; moderator {write, delete}
    await subject.attach_role("editor")
    assert await permission_rows() == {("posts.read", False), ("posts.write", False)}

    await subject.attach_role("moderator")
    assert await permission_rows() == {("posts.read", False), ("posts.write", False), ("posts.delete", False)}

    assert await subject.detach_role("editor")
    assert await permission_rows() == {("posts.write", False), ("posts.delete", False)}


@pytest.mark.asyncio
async def test_unique_permissions_for_role(subject):
    await subject.attach_role("editor")

    unique = await subject.unique_permissions_for_role("moderator")

    assert [p.slug for p in unique] == ["posts.delete"]


@pytest.mark.asyncio
async def test_attach_then_detach_restores_permissions(subject, permission_rows):
    await subject.attach_role("moderator")
    await subject.attach_permission("users.read")
    before = await permission_rows()

    await subject.attach_role("editor")
    await subject.detach_role("editor")

    assert await permission_rows() == before


@pytest.mark.asyncio
async def test_detach_role_not_held(db, subject):
    await subject.attach_role("editor")

    assert not await subject.detach_role("moderator")
    assert await role_rows(db) == {("root", "editor")}


@pytest.mark.asyncio
async def test_detach_role_rejects_expressions(subject):
    with pytest.raises(InvalidSlugExpression):
        await subject.detach_role("posts.*")
    with pytest.raises(InvalidSlugExpression):
        await subject.detach_role("editor|moderator")


@pytest.mark.asyncio
async def test_detach_inherited_role_from_subgroup_keeps_parent_assignment(db, subject_for):
    await subject_for(group_id="root").attach_role("editor")
    child = subject_for(group_id="child")

    assert await child.detach_role("editor")
    assert await role_rows(db) == {("root", "editor")}


@pytest.mark.asyncio
async def test_explicit_permission_survives_role_churn(subject, permission_rows):
    assert await subject.attach_permission("posts.read")

    await subject.attach_role("editor")
    assert ("posts.read", True) in await permission_rows()

    await subject.detach_role("editor")
    assert await permission_rows() == {("posts.read", True)}
    assert await subject.can("posts.read")


@pytest.mark.asyncio
async def test_attach_permission_promotes_role_permission(subject, permission_rows):
    await subject.attach_role("editor")

    assert await subject.attach_permission("posts.read")
    assert await permission_rows() == {("posts.read", True), ("posts.write", False)}

    # detaching the role now leaves the explicit grant alone
    await subject.detach_role("editor")
    assert await permission_rows() == {("posts.read", True)}


@pytest.mark.asyncio
async def test_attach_permission_twice_keeps_one_row(subject, permission_rows):
    assert await subject.attach_permission("users.read")
    assert await subject.attach_permission("users.read")

    assert await permission_rows() == {("users.read", True)}


@pytest.mark.asyncio
async def test_attach_unknown_permission(subject, permission_rows):
    assert not await subject.attach_permission("posts.publish")
    assert await permission_rows() == set()


@pytest.mark.asyncio
async def test_detach_permission(subject, permission_rows):
    await subject.attach_permission("users.read")

    assert await subject.detach_permission("users.read")
    assert await permission_rows() == set()
    assert not await subject.can("users.read")


@pytest.mark.asyncio
async def test_detach_permission_leaves_role_permissions(subject, permission_rows):
    await subject.attach_role("editor")

    assert not await subject.detach_permission("posts.read")
    assert ("posts.read", False) in await permission_rows()


@pytest.mark.asyncio
async def test_detach_permission_still_granted_by_role(subject, permission_rows):
    await subject.attach_role("editor")
    await subject.attach_permission("posts.read")

    assert await subject.detach_permission("posts.read")
    assert ("posts.read", False) in await permission_rows()
    assert await subject.can("posts.read")

    # and the role can now take it away again
    await subject.detach_role("editor")
    assert await permission_rows() == set()


@pytest.mark.asyncio
async def test_role_and_explicit_permissions_make_up_all(subject):
    await subject.attach_role("editor")
    await subject.attach_permission("users.manage")

    from_roles = {p.slug for p in await subject.get_permissions("role")}
    explicit = {p.slug for p in await subject.get_permissions("explicit")}
    everything = {p.slug for p in await subject.get_permissions()}

    assert from_roles == {"posts.read", "posts.write"}
    assert explicit == {"users.manage"}
    assert from_roles | explicit == everything


@pytest.mark.asyncio
async def test_caches_follow_writes(subject):
    assert await subject.get_roles() == []
    assert await subject.get_permissions() == []

    await subject.attach_role("editor")
    assert [role.slug for role in await subject.get_roles()] == ["editor"]
    assert {p.slug for p in await subject.get_permissions()} == {"posts.read", "posts.write"}

    await subject.attach_permission("users.read")
    assert "users.read" in {p.slug for p in await subject.get_permissions()}

    await subject.detach_permission("users.read")
    assert "users.read" not in {p.slug for p in await subject.get_permissions()}

    await subject.detach_role("editor")
    assert await subject.get_roles() == []
    assert await subject.get_permissions() == []


@pytest.mark.asyncio
async def test_degraded_hierarchy_treats_groups_as_roots(db, catalog, users):
    from app.features.permissions.subject import Subject

    await Subject(db, "alice", "root").attach_role("editor")
    subject = Subject(db, "alice", "child")

    assert not subject.groups.supports_hierarchy
    assert await subject.get_roles() == []
    assert not await subject.is_("editor")
    # custom roles are looked up on the group itself
    with pytest.raises(UnknownRole):
        await subject.attach_role("reviewer")


@pytest.mark.asyncio
async def test_writes_are_visible_after_commit(db, subject, permission_rows):
    await subject.attach_role("editor")
    await db.commit()

    assert await role_rows(db) == {("root", "editor")}
    assert len(await permission_rows()) == 2


@pytest.mark.asyncio
async def test_rollback_discards_attach(db, subject, permission_rows):
    await db.commit()
    await subject.attach_role("editor")
    await db.rollback()

    assert await role_rows(db) == set()
    assert await permission_rows() == set()


@pytest.mark.asyncio
async def test_concurrent_attach_is_a_no_op(db, subject_for, permission_rows, monkeypatch):
    await subject_for().attach_role("editor")
    before = await permission_rows()

    # The existence check ran before the other attach landed
    subject = subject_for()
    real_is = subject.resolver.is_
    calls = []

    async def stale_is(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            return False
        return await real_is(*args, **kwargs)

    monkeypatch.setattr(subject.resolver, "is_", stale_is)

    role = await subject.attach_role("editor")

    assert role.slug == "editor"
    assert len(calls) == 2
    await db.commit()
    assert await role_rows(db) == {("root", "editor")}
    assert await permission_rows() == before


@pytest.mark.foreign_keys
@pytest.mark.asyncio
async def test_attach_role_for_unknown_user_raises(db, subject_for, permission_rows):
    subject = subject_for(user_id="nobody")

    with pytest.raises(IntegrityError):
        await subject.attach_role("editor")

    assert await role_rows(db, user_id="nobody") == set()
    assert await permission_rows(user_id="nobody") == set()


@pytest.mark.asyncio
async def test_detach_with_warm_cache_leaves_commit_to_caller(db, subject, permission_rows):
    await subject.attach_role("editor")
    assert [role.slug for role in await subject.get_roles()] == ["editor"]
    await db.commit()

    assert await subject.detach_role("editor")
    await db.rollback()

    assert await role_rows(db) == {("root", "editor")}
    assert len(await permission_rows()) == 2


@pytest.mark.asyncio
async def test_uppercase_queries_are_rejected(subject):
    await subject.attach_role("editor")

    assert await subject.can("posts.*")
    with pytest.raises(InvalidSlugExpression):
        await subject.can("POSTS.*")
    with pytest.raises(InvalidSlugExpression):
        await subject.is_("Editor")
