import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    String,
    Text,
    DateTime,
    ForeignKey,
)
from .base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


class Conversation(Base):
    __tablename__ = "conversation"

    id = Column(String(36), primary_key=True, index=True, default=new_uuid)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

class Prompt(Base):
    __tablename__ = "prompt"

    id = Column(String(36), primary_key=True, index=True, default=new_uuid)
    conversation_id = Column(
        String(36),
        ForeignKey("conversation.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    prompt = Column(Text, nullable=False)
    response = Column(Text, nullable=False, default="")  # empty until finalized
    model = Column(String(100), nullable=False)
    stream = Column(Boolean, nullable=False, default=False)
    # microsecond resolution, prompts are ordered by it
    created_at = Column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
