from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_db
from app.models.user import User
from app.schemas.user import UserCreate, UserResponse, UserBrief
from app.services.ledger_service import new_balance_record

router = APIRouter()


@router.get('', response_model=list[UserBrief])
async def list_users(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List users (for dev user selection)."""
    result = await db.execute(select(User).order_by(User.id).limit(limit))
    return result.scalars().all()


@router.post('', response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    """Register a user with an empty points account."""
    existing = await db.execute(
        select(User).where(or_(User.username == user_data.username, User.email == user_data.email))
    )
    if existing.scalars().first():
        raise HTTPException(status_code=400, detail='Username or email already taken')

    user = User(
        username=user_data.username,
        email=user_data.email,
        points_balance=0,
    )
    db.add(user)
    await db.flush()

    db.add(new_balance_record(user.id))
    await db.commit()
    await db.refresh(user)
    return user


@router.get('/{user_id}', response_model=UserResponse)
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail='User not found')
    return user
