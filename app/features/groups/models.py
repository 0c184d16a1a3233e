"""
Group model.

Groups form a tree through ``parent_id``. Role and permission assignments are
scoped to a group; roles held on a group cascade down to its descendants and
custom roles are always defined on the root of the tree.
"""
from sqlalchemy import String, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Group(Base, TimestampMixin):
    """
    Organizational scope for role and permission assignments.

    A group without a parent is a root group.
    """
    __tablename__ = "groups"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    parent_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    def __repr__(self) -> str:
        return f"<Group(id={self.id}, name={self.name!r}, parent_id={self.parent_id})>"
