"""
SQL-backed group hierarchy.

Answers the two questions the permission engine asks about groups: which
groups sit above a group, and which group is the root of its tree.
"""
from sqlalchemy import Select, literal, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.core import config
from app.features.groups.models import Group


# Guards the recursive walk against a parent_id cycle
MAX_DEPTH = 64


def ancestors_query(group_id: str) -> Select:
    """
    Select ``(id, depth)`` for the group (depth 0) and every ancestor.

    Uses a recursive CTE so the whole chain comes back in one round trip.
    """
    chain = (
        select(Group.id, Group.parent_id, literal(0).label("depth"))
        .where(Group.id == group_id)
        .cte("group_chain", recursive=True)
    )
    child = chain.alias()
    parent = aliased(Group)
    chain = chain.union_all(
        select(parent.id, parent.parent_id, (child.c.depth + 1).label("depth"))
        .where(parent.id == child.c.parent_id)
        .where(child.c.depth < MAX_DEPTH)
    )
    return select(chain.c.id, chain.c.depth).order_by(chain.c.depth)


class SqlGroupHierarchy:
    """Group hierarchy read from the ``groups`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def normalize_parents(self, group_id: str) -> list[str]:
        """Ancestor ids, nearest first. Empty for a root or unknown group."""
        result = await self.session.execute(ancestors_query(group_id))
        return [row.id for row in result if row.depth > 0]

    async def get_root_group(self, group_id: str) -> str | None:
        """Id of the topmost ancestor, the group itself for a root, None if unknown."""
        result = await self.session.execute(ancestors_query(group_id))
        rows = result.all()
        if not rows:
            return None
        return rows[-1].id


def configured_hierarchy(session: AsyncSession) -> SqlGroupHierarchy | None:
    """The SQL hierarchy, or None when GROUP_HIERARCHY_ENABLED is off."""
    return SqlGroupHierarchy(session) if config.GROUP_HIERARCHY_ENABLED else None
