"""Domain Entities - Auth"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from typing import Optional

from domain.enums import UserRole


class User(BaseModel):
    """User Entity; also the acting identity of a request"""
    user_id: UUID = Field(default_factory=uuid4)
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    role: UserRole = UserRole.GUEST
    disabled: bool = False
    has_completed_onboarding: bool = False

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_host(self) -> bool:
        return self.role == UserRole.HOST


class UserInDB(User):
    """User with hashed password for DB storage"""
    hashed_password: str

    def public(self) -> User:
        return User(**self.model_dump(exclude={"hashed_password"}))
