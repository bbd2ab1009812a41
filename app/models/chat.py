"""Chat and Message SQLModel definitions.

Models:
- Chat: named thread of messages owned by one user
- Message: immutable turn inside a chat
"""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from app.core.clock import utcnow
from app.models.types import UTCDateTime

DEFAULT_CHAT_TITLE = "New Chat"

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


class Chat(SQLModel, table=True):
    """
    Chat thread.

    Ownership: every chat belongs to exactly one user via user_id.
    All reads are filtered by user_id.
    """
    __tablename__ = "chats"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, nullable=False)
    title: str = Field(default=DEFAULT_CHAT_TITLE, max_length=255)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)


class Message(SQLModel, table=True):
    """
    Message in a chat.

    Role: "user" or "assistant". Never updated after insert.
    user_id is denormalized for ownership checks.
    """
    __tablename__ = "messages"

    id: Optional[int] = Field(default=None, primary_key=True)
    chat_id: int = Field(foreign_key="chats.id", ondelete="CASCADE", index=True, nullable=False)
    user_id: str = Field(index=True, nullable=False)
    role: str = Field(default=ROLE_USER, max_length=20)
    content: str = Field()
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
