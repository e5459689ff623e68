from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Enum as SQLAlchemyEnum,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
    false,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import Uuid

from chatcore.schemas.message import MessageKind

from .base import BaseModel


class Message(BaseModel):
    __tablename__ = "messages"

    # id, created_at, updated_at are inherited from BaseModel
    # Messages are soft-deleted through is_deleted, deleted_at records when
    conversation_id = Column(
        Uuid(as_uuid=True), ForeignKey("conversations.id"), nullable=False
    )
    sender_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    kind = Column(
        SQLAlchemyEnum(
            MessageKind,
            name="message_kind",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=MessageKind.TEXT,
    )
    content = Column(Text, nullable=True)
    attachment_url = Column(Text, nullable=True)
    attachment_name = Column(Text, nullable=True)
    attachment_size = Column(BigInteger, nullable=True)
    attachment_mime_type = Column(Text, nullable=True)
    # Storage key of the uploaded object, kept for cleanup
    attachment_key = Column(Text, nullable=True)
    reply_to_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id"), nullable=True)
    client_message_id = Column(Text, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False, server_default=false())

    # Relationships
    conversation = relationship(
        "Conversation", back_populates="messages", foreign_keys=[conversation_id]
    )
    sender = relationship("User", back_populates="messages", foreign_keys=[sender_id])
    reply_to = relationship("Message", remote_side="Message.id")

    __table_args__ = (
        CheckConstraint(
            "kind = 'text' OR attachment_url IS NOT NULL",
            name="ck_message_attachment_required",
        ),
        UniqueConstraint(
            "conversation_id",
            "sender_id",
            "client_message_id",
            name="uq_message_client_id",
        ),
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )
