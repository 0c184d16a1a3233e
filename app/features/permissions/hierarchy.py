"""
Per-subject memo over the group hierarchy.

The hierarchy itself is an optional capability supplied when the subject is
built. Without it every group is treated as its own root with no parents.
"""
from typing import Protocol, runtime_checkable

from app.utils import get_logger


log = get_logger(__name__)


@runtime_checkable
class GroupHierarchy(Protocol):
    """What the engine needs from the group model."""

    async def normalize_parents(self, group_id: str) -> list[str]:
        """Ancestor ids of ``group_id``, excluding the group itself."""
        ...

    async def get_root_group(self, group_id: str) -> str | None:
        """Topmost ancestor of ``group_id``, or None if the group is unknown."""
        ...


class GroupHierarchyCache:
    """
    Memoized group chain and root group lookups.

    Each group id costs at most one call per lookup kind to the underlying
    hierarchy for the lifetime of the cache.
    """

    def __init__(self, hierarchy: GroupHierarchy | None = None):
        if hierarchy is not None and not isinstance(hierarchy, GroupHierarchy):
            raise TypeError(f"{type(hierarchy).__name__} does not implement GroupHierarchy")
        self.hierarchy = hierarchy
        self._chains: dict[str, list[str]] = {}
        self._roots: dict[str, str] = {}

    @property
    def supports_hierarchy(self) -> bool:
        return self.hierarchy is not None

    async def resolve_group_chain(self, group_id: str) -> list[str]:
        """The group followed by all of its ancestors."""
        if group_id in self._chains:
            return self._chains[group_id]

        chain = [group_id]
        if self.hierarchy is not None:
            chain += [parent for parent in await self.hierarchy.normalize_parents(group_id) if parent != group_id]

        log.debug(f"Group chain for {group_id}: {chain}")
        self._chains[group_id] = chain
        return chain

    async def resolve_root_group(self, group_id: str) -> str:
        """The root of the group's tree; the group itself without a hierarchy."""
        if group_id in self._roots:
            return self._roots[group_id]

        root = None
        if self.hierarchy is not None:
            root = await self.hierarchy.get_root_group(group_id)

        self._roots[group_id] = root or group_id
        return self._roots[group_id]
