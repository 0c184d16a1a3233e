"""
SQLAlchemy declarative base and shared column mixins.

Every ORM model and association table is registered on ``Base.metadata``,
which ``init_db()`` uses to create the schema.
"""
from datetime import datetime
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Usage:
        from app.core.database.base import Base

        class Group(Base):
            __tablename__ = "groups"

            id: Mapped[str] = mapped_column(String(26), primary_key=True)
            name: Mapped[str] = mapped_column(String(100))
    """
    pass


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamps to models.

    Usage:
        class Permission(Base, TimestampMixin):
            __tablename__ = "permissions"
            slug: Mapped[str] = mapped_column(String(255), primary_key=True)
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
