"""
Group feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.groups.dependencies import get_group_by_id
from app.features.groups.hierarchy import configured_hierarchy
from app.features.groups.models import Group
from app.features.groups.schemas import GroupCreate, GroupResponse, GroupChainResponse
from app.features.permissions.hierarchy import GroupHierarchyCache
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

router = APIRouter(tags=["groups"])


@router.post("/", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    group_data: GroupCreate,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a group, optionally under a parent (admin only)."""
    if group_data.parent_id is not None and await db.get(Group, group_data.parent_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Parent group not found"
        )

    group = Group(**group_data.model_dump())
    db.add(group)
    await db.flush()
    await db.refresh(group)

    log.info(f"Group {group.id} created by {admin.id} (parent={group.parent_id})")
    return group


@router.get("/", response_model=list[GroupResponse])
async def list_groups(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    parent_id: str | None = None,
    skip: int = 0,
    limit: int = 50
):
    """List groups. Filter by parent_id to list the children of one group."""
    stmt = select(Group).order_by(Group.name).offset(skip).limit(limit)
    if parent_id is not None:
        stmt = stmt.where(Group.parent_id == parent_id)

    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(
    user: Annotated[User, Depends(get_current_user)],
    group: Annotated[Group, Depends(get_group_by_id)]
):
    """Get a group by ID."""
    return group


@router.get("/{group_id}/chain", response_model=GroupChainResponse)
async def get_group_chain(
    user: Annotated[User, Depends(get_current_user)],
    group: Annotated[Group, Depends(get_group_by_id)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """The group's ancestors and root, as used for role inheritance."""
    groups = GroupHierarchyCache(configured_hierarchy(db))
    return GroupChainResponse(
        group_id=group.id,
        chain=await groups.resolve_group_chain(group.id),
        root_group_id=await groups.resolve_root_group(group.id),
    )
