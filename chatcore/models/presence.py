from sqlalchemy import Column, DateTime, Enum as SQLAlchemyEnum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.types import Uuid

from chatcore.schemas.presence import PresenceStatus

from .base import BaseModel


class Presence(BaseModel):
    __tablename__ = "presence"

    # One row per user, written with upsert semantics
    user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id"), unique=True, nullable=False
    )
    status = Column(
        SQLAlchemyEnum(
            PresenceStatus,
            name="presence_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    typing_in_conversation_id = Column(
        Uuid(as_uuid=True), ForeignKey("conversations.id"), nullable=True
    )
    last_seen = Column(DateTime(timezone=True), nullable=False)

    user = relationship("User", back_populates="presence")
