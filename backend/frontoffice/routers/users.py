from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import record_activity
from frontoffice.models import User, StaffRole
from frontoffice.schemas import UserCreate, UserUpdate, UserResponse
from frontoffice.auth import get_password_hash, require_roles

router = APIRouter(prefix="/users", tags=["Users"])

require_admin = require_roles(StaffRole.ADMINISTRATOR)


async def _get_user_or_404(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalars().first()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User with ID {user_id} not found"
        )
    return user


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user: UserCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    result = await db.execute(select(User).where(User.username == user.username))
    if result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Username already exists"
        )

    result = await db.execute(select(User).where(User.email == user.email))
    if result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already exists"
        )

    db_user = User(
        username=user.username,
        email=user.email,
        hashed_password=get_password_hash(user.password),
        full_name=user.full_name,
        role=user.role,
        is_active=True
    )
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)

    await record_activity(
        mongo_db, current_user,
        action="CREATE",
        description=f"Created {db_user.role.value} account {db_user.username}",
        target_type="user",
        target_id=db_user.id
    )
    return db_user


@router.get("", response_model=List[UserResponse])
async def list_users(
    role: Optional[StaffRole] = None,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    query = select(User)
    if role:
        query = query.where(User.role == role)

    result = await db.execute(query.order_by(User.id).offset(skip).limit(limit))
    return result.scalars().all()


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return await _get_user_or_404(db, user_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    user_update: UserUpdate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    user = await _get_user_or_404(db, user_id)
    update_data = user_update.model_dump(exclude_unset=True)

    if "email" in update_data and update_data["email"] != user.email:
        result = await db.execute(select(User).where(User.email == update_data["email"]))
        if result.scalars().first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Email already exists"
            )

    password = update_data.pop("password", None)
    if password:
        user.hashed_password = get_password_hash(password)

    for field, value in update_data.items():
        setattr(user, field, value)

    await db.commit()
    await db.refresh(user)

    await record_activity(
        mongo_db, current_user,
        action="UPDATE",
        description=f"Updated account {user.username}",
        target_type="user",
        target_id=user.id,
        details={"fields_updated": sorted(user_update.model_dump(exclude_unset=True).keys())}
    )
    return user


@router.delete("/{user_id}", response_model=UserResponse)
async def deactivate_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    """Deactivate a staff account; the row is kept for schedules and history"""
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot deactivate your own account"
        )

    user = await _get_user_or_404(db, user_id)
    user.is_active = False
    await db.commit()
    await db.refresh(user)

    await record_activity(
        mongo_db, current_user,
        action="DEACTIVATE",
        description=f"Deactivated account {user.username}",
        target_type="user",
        target_id=user.id
    )
    return user
