"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.groups.models import Group
from app.features.users.models import User
from app.features.users.schemas import UserCreate, UserResponse, UserPublic, CurrentGroupUpdate
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.utils import get_logger


log = get_logger(__name__)

router = APIRouter(tags=["users"])


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.put("/me/current-group", response_model=UserResponse)
async def switch_current_group(
    update_data: CurrentGroupUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Switch the group the current user's checks run against."""
    if await db.get(Group, update_data.group_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Group not found"
        )

    user.current_group_id = update_data.group_id
    await db.flush()
    await db.refresh(user)

    log.info(f"User {user.id} switched to group {user.current_group_id}")
    return user


@router.get("/{user_id}", response_model=UserPublic)
async def get_user_by_id(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get public user profile by ID."""
    user = await db.get(User, user_id)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return user


@router.get("/", response_model=list[UserPublic])
async def list_users(
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 50
):
    """List all active users (public info only)."""
    result = await db.execute(
        select(User)
        .where(User.is_active == True)  # noqa: E712
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


# Admin-only routes
@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a user (admin only)."""
    existing = await db.execute(select(User).where(User.email == user_data.email))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this email already exists"
        )

    if user_data.current_group_id is not None and await db.get(Group, user_data.current_group_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Group not found"
        )

    user = User(**user_data.model_dump())
    db.add(user)
    await db.flush()
    await db.refresh(user)

    log.info(f"User {user.id} created by {admin.id}")
    return user


@router.delete("/{user_id}")
async def deactivate_user(
    user_id: str,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Deactivate a user account (admin only)."""
    user = await db.get(User, user_id)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    # Prevent self-deactivation
    if user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account"
        )

    user.is_active = False
    await db.flush()

    return {"message": "User deactivated successfully"}
