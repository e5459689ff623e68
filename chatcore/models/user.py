import uuid

from fastapi_users.db import SQLAlchemyBaseUserTable
from sqlalchemy import Column, Enum as SQLAlchemyEnum, Text
from sqlalchemy.orm import relationship
from sqlalchemy.types import Uuid

from chatcore.schemas.user import UserRole

from .base import BaseModel


# User model inherits from BaseModel and SQLAlchemyBaseUserTable
# Note: SQLAlchemyBaseUserTable requires a specific type for the ID. Uuid works.
class User(SQLAlchemyBaseUserTable[uuid.UUID], BaseModel):
    __tablename__ = "users"

    # id, created_at, updated_at, deleted_at are inherited from BaseModel
    # email, hashed_password, is_active, is_superuser, is_verified are from SQLAlchemyBaseUserTable

    name = Column(Text, nullable=True)
    role = Column(
        SQLAlchemyEnum(
            UserRole, name="user_role", values_callable=lambda e: [m.value for m in e]
        ),
        nullable=False,
        default=UserRole.EMPLOYEE,
    )
    # Organizations live outside the chat core, so no foreign key here
    organization_id = Column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    participations = relationship(
        "Participant",
        back_populates="user",
        foreign_keys="Participant.user_id",
    )
    messages = relationship(
        "Message",
        back_populates="sender",
        foreign_keys="Message.sender_id",
    )
    presence = relationship("Presence", back_populates="user", uselist=False)
