import pytest

from app.features.groups.hierarchy import SqlGroupHierarchy
from app.features.permissions.hierarchy import GroupHierarchy, GroupHierarchyCache


class FakeHierarchy:
    """In-memory parent links that count lookups."""

    def __init__(self, parents: dict[str, str | None]):
        self.parents = parents
        self.calls = {"normalize_parents": 0, "get_root_group": 0}

    async def normalize_parents(self, group_id: str) -> list[str]:
        self.calls["normalize_parents"] += 1
        chain = []
        parent = self.parents.get(group_id)
        while parent is not None:
            chain.append(parent)
            parent = self.parents.get(parent)
        return chain

    async def get_root_group(self, group_id: str) -> str | None:
        self.calls["get_root_group"] += 1
        if group_id not in self.parents:
            return None
        chain = await self.normalize_parents(group_id)
        return chain[-1] if chain else group_id


TREE = {"a": None, "b": "a", "c": "b"}


def test_fake_implements_protocol():
    assert isinstance(FakeHierarchy(TREE), GroupHierarchy)


def test_rejects_objects_without_the_capability():
    with pytest.raises(TypeError):
        GroupHierarchyCache(object())


@pytest.mark.asyncio
async def test_chain_starts_with_the_group():
    groups = GroupHierarchyCache(FakeHierarchy(TREE))

    assert groups.supports_hierarchy
    assert await groups.resolve_group_chain("c") == ["c", "b", "a"]
    assert await groups.resolve_group_chain("a") == ["a"]


@pytest.mark.asyncio
async def test_chain_is_memoized_per_group():
    hierarchy = FakeHierarchy(TREE)
    groups = GroupHierarchyCache(hierarchy)

    await groups.resolve_group_chain("c")
    await groups.resolve_group_chain("c")
    await groups.resolve_group_chain("b")

    assert hierarchy.calls["normalize_parents"] == 2


@pytest.mark.asyncio
async def test_root_is_memoized_per_group():
    hierarchy = FakeHierarchy(TREE)
    groups = GroupHierarchyCache(hierarchy)

    assert await groups.resolve_root_group("c") == "a"
    assert await groups.resolve_root_group("c") == "a"

    assert hierarchy.calls["get_root_group"] == 1


@pytest.mark.asyncio
async def test_unknown_group_is_its_own_root():
    groups = GroupHierarchyCache(FakeHierarchy(TREE))
    assert await groups.resolve_root_group("nope") == "nope"


@pytest.mark.asyncio
async def test_without_hierarchy_every_group_stands_alone():
    groups = GroupHierarchyCache()

    assert not groups.supports_hierarchy
    assert await groups.resolve_group_chain("c") == ["c"]
    assert await groups.resolve_root_group("c") == "c"


# SQL-backed hierarchy


@pytest.mark.asyncio
async def test_sql_parents_nearest_first(db, groups):
    hierarchy = SqlGroupHierarchy(db)

    assert await hierarchy.normalize_parents("grandchild") == ["child", "root"]
    assert await hierarchy.normalize_parents("child") == ["root"]
    assert await hierarchy.normalize_parents("root") == []


@pytest.mark.asyncio
async def test_sql_root_group(db, groups):
    hierarchy = SqlGroupHierarchy(db)

    assert await hierarchy.get_root_group("grandchild") == "root"
    assert await hierarchy.get_root_group("root") == "root"
    assert await hierarchy.get_root_group("other") == "other"


@pytest.mark.asyncio
async def test_sql_unknown_group(db, groups):
    hierarchy = SqlGroupHierarchy(db)

    assert await hierarchy.normalize_parents("missing") == []
    assert await hierarchy.get_root_group("missing") is None


@pytest.mark.asyncio
async def test_sql_hierarchy_plugs_into_the_cache(db, groups):
    groups_cache = GroupHierarchyCache(SqlGroupHierarchy(db))

    assert await groups_cache.resolve_group_chain("grandchild") == ["grandchild", "child", "root"]
    assert await groups_cache.resolve_root_group("missing") == "missing"
