from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLAlchemyEnum,
    ForeignKey,
    UniqueConstraint,
    true,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import Uuid

from chatcore.schemas.participant import ParticipantRole  # Import the Python Enum

from .base import BaseModel


class Participant(BaseModel):
    __tablename__ = "conversation_participants"

    # id, created_at, updated_at, deleted_at inherited from BaseModel
    conversation_id = Column(
        Uuid(as_uuid=True), ForeignKey("conversations.id"), nullable=False
    )
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    role = Column(
        SQLAlchemyEnum(
            ParticipantRole,
            name="participant_role",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    joined_at = Column(DateTime(timezone=True), nullable=False)
    last_read_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    # Relationships
    user = relationship("User", back_populates="participations", foreign_keys=[user_id])
    conversation = relationship(
        "Conversation", back_populates="participants", foreign_keys=[conversation_id]
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint(
            "conversation_id", "user_id", name="uq_participant_conversation_user"
        ),
    )
