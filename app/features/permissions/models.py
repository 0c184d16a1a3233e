"""
Role and permission models for group-scoped RBAC.

Catalog (provisioned by seeding or the admin catalog routes):
- Global roles, visible in every group
- Custom roles, defined on a root group
- Permissions
- Role-permission grants, declared per group

Assignments (written only by the grant engine):
- User roles within a group
- User permissions within a group, either materialized from a role or
  added explicitly on the user

Table names come from configuration.
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, Table, Column, JSON, Text, DateTime, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from app.core import config
from app.core.database.base import Base, TimestampMixin, generate_ulid


# ============================================================================
# Catalog
# ============================================================================

class Role(Base, TimestampMixin):
    """
    Global role, identified by its slug.

    Which permissions a role grants is declared per group in role_permission,
    so the same role may grant different permissions in different groups.
    """
    __tablename__ = config.ROLE_TABLE

    slug: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Role(slug={self.slug!r}, name={self.name!r})>"


class RoleCustom(Base, TimestampMixin):
    """
    Role defined for one group tree.

    Always stored against the root group; slugs are unique per root group.
    """
    __tablename__ = config.ROLE_CUSTOM_TABLE

    group_id: Mapped[str] = mapped_column(String(26), primary_key=True)
    slug: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<RoleCustom(group_id={self.group_id}, slug={self.slug!r})>"


class Permission(Base, TimestampMixin):
    """
    Grantable permission.

    Slugs are dot-separated so queries can match whole families,
    e.g. "claims.*" covers "claims.read" and "claims.approve".
    """
    __tablename__ = config.PERMISSION_TABLE

    slug: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Permission(slug={self.slug!r}, name={self.name!r})>"


# role (global or custom) grants permission within a group
role_permission = Table(
    config.ROLE_PERMISSION_TABLE,
    Base.metadata,
    Column("group_id", String(26), primary_key=True),
    Column("roles_slug", String(255), primary_key=True),
    Column(
        "permissions_slug",
        String(255),
        ForeignKey(f"{config.PERMISSION_TABLE}.slug", ondelete="CASCADE"),
        primary_key=True,
    ),
)


# ============================================================================
# Assignments
# ============================================================================

user_role = Table(
    config.USER_ROLE_TABLE,
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("group_id", String(26), primary_key=True),
    Column("roles_slug", String(255), primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=datetime.now),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=datetime.now, onupdate=datetime.now),
)

# added_on_user marks explicit grants; False rows were materialized from a role
user_permission = Table(
    config.USER_PERMISSION_TABLE,
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("group_id", String(26), primary_key=True),
    Column(
        "permissions_slug",
        String(255),
        ForeignKey(f"{config.PERMISSION_TABLE}.slug", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("added_on_user", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=datetime.now),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=datetime.now, onupdate=datetime.now),
)


# ============================================================================
# Audit
# ============================================================================

class AuditLog(Base, TimestampMixin):
    """
    Audit log for role and permission changes.

    Tracks who did what, to whom, in which group, and from where.
    """
    __tablename__ = "audit_logs"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Context
    group_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
