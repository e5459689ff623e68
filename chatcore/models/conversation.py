from sqlalchemy import Column, DateTime, Enum as SQLAlchemyEnum, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.types import Uuid

from chatcore.schemas.conversation import ConversationKind

from .base import BaseModel


class Conversation(BaseModel):
    __tablename__ = "conversations"

    # id, created_at, updated_at, deleted_at are inherited from BaseModel
    name = Column(Text, nullable=True)
    kind = Column(
        SQLAlchemyEnum(
            ConversationKind,
            name="conversation_kind",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    created_by_user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    organization_id = Column(Uuid(as_uuid=True), nullable=True)
    # Enrollment this coaching conversation belongs to
    coaching_context_id = Column(Uuid(as_uuid=True), nullable=True)
    # Canonical participant-pair key for direct and coaching conversations.
    # Unique, so two concurrent find-or-create calls cannot both insert.
    dedupe_key = Column(Text, unique=True, nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    creator = relationship("User", foreign_keys=[created_by_user_id])
    messages = relationship(
        "Message",
        back_populates="conversation",
        foreign_keys="Message.conversation_id",
        cascade="all, delete-orphan",
    )
    participants = relationship(
        "Participant", back_populates="conversation", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Conversation {self.id} kind={getattr(self.kind, 'value', self.kind)}>"
