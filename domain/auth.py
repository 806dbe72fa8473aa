"""Domain Entities - Auth"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from typing import Optional

from domain.enums import UserRole


class User(BaseModel):
    """Authenticated caller. The core only ever sees it as an opaque identity."""
    user_id: UUID = Field(default_factory=uuid4)
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: UserRole = UserRole.CUSTOMER
    disabled: bool = False

    class Config:
        from_attributes = True

    @property
    def guest_ref(self) -> str:
        return str(self.user_id)

    def is_staff(self) -> bool:
        return self.role == UserRole.STAFF


class UserInDB(User):
    """User with hashed password for DB storage"""
    hashed_password: str
