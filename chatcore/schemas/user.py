import enum
import uuid

from fastapi_users import schemas
from pydantic import BaseModel, ConfigDict


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    HR = "hr"
    COACH = "coach"
    EMPLOYEE = "employee"
    INDIVIDUAL = "individual"


class UserRead(schemas.BaseUser[uuid.UUID]):
    name: str | None = None
    role: UserRole
    organization_id: uuid.UUID | None = None


class UserCreate(schemas.BaseUserCreate):
    name: str | None = None
    role: UserRole = UserRole.EMPLOYEE
    organization_id: uuid.UUID | None = None


class UserUpdate(schemas.BaseUserUpdate):
    name: str | None = None


# Identity shown next to messages and participant rows
class UserSummary(BaseModel):
    id: uuid.UUID
    name: str | None = None
    email: str
    role: UserRole

    model_config = ConfigDict(from_attributes=True)
