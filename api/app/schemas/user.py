from datetime import datetime
from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    """Schema for registering a user (no password - dev mode)."""
    username: str = Field(..., min_length=1, max_length=50, pattern=r'^[a-zA-Z0-9_]+$')
    email: str = Field(..., min_length=3, max_length=255, pattern=r'^[^@\s]+@[^@\s]+$')


class UserBrief(BaseModel):
    """Brief user info for embedding in responses."""
    id: int
    username: str
    points_balance: int = 0

    class Config:
        from_attributes = True


class UserResponse(UserBrief):
    """Full user response."""
    email: str
    is_admin: bool
    created_at: datetime

    class Config:
        from_attributes = True
