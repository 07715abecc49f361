# backend/models.py
from typing import Optional
from datetime import datetime, timezone
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    google_sub: str = Field(unique=True, index=True)
    name: Optional[str] = Field(default=None)
    email: Optional[str] = Field(default=None, index=True)
    picture: Optional[str] = Field(default=None, max_length=512)
    created_at: datetime = Field(default_factory=utcnow)


class UserRead(SQLModel):
    """Public view of a user returned by the auth endpoints."""
    id: int
    sub: str
    name: Optional[str] = None
    email: Optional[str] = None
    picture: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserRead":
        return cls(
            id=user.id, sub=user.google_sub, name=user.name, email=user.email,
            picture=user.picture, created_at=user.created_at,
        )
