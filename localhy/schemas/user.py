from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel


class UserRole(str, Enum):
    """Roles carried in the access token"""

    USER = "user"
    ADMIN = "admin"

    @classmethod
    def is_admin(cls, role: Union[str, "UserRole"]) -> bool:
        if isinstance(role, cls):
            role = role.value
        return role == cls.ADMIN.value


class User(BaseModel):
    """Authenticated principal resolved from the bearer token.

    Accounts live in the auth collaborator; this service only needs the id.
    """

    id: str
    email: Optional[str] = None
    role: UserRole = UserRole.USER
    is_active: bool = True

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return UserRole.is_admin(self.role)
