from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer

from .base import BaseDBModel, as_utc


class SenderType(str, Enum):
    """Who wrote a message."""

    USER = "user"
    ASSISTANT = "assistant"


class RelayMode(str, Enum):
    """Which LLM path produced an assistant turn."""

    FALLBACK = "fallback"
    ASSISTANT = "assistant"


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class MessageMetadata(BaseModel):
    """Optional per-message metadata stored alongside assistant turns."""

    token_usage: Optional[TokenUsage] = None
    response_time_ms: Optional[int] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    error: Optional[str] = None
    mode: Optional[RelayMode] = None
    fallback: bool = False
    assistant_id: Optional[str] = None
    thread_id: Optional[str] = None
    run_id: Optional[str] = None
    openai_message_id: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class DevotionalContext(BaseModel):
    devotional_id: Optional[str] = None
    day_number: Optional[int] = None
    week_theme: Optional[str] = None
    scripture_reference: Optional[str] = None
    current_challenge: Optional[str] = None


class Message(BaseDBModel):
    """Message model for API responses."""

    conversation_id: str
    sender_type: SenderType
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_row(cls, row) -> "Message":
        return cls(
            id=row.id,
            conversation_id=row.conversation_id,
            sender_type=SenderType(row.sender_type),
            content=row.content,
            metadata=row.metadata_json or {},
            created_at=row.created_at,
        )


class Conversation(BaseDBModel):
    """Conversation model for API responses."""

    user_id: str
    assistant_id: str
    title: Optional[str] = None
    has_thread: bool = False
    devotional_context: Optional[DevotionalContext] = None
    last_message_at: Optional[datetime] = None

    @field_serializer("last_message_at", when_used="always")
    def _serialize_last_message_at(self, v: Optional[datetime]) -> Optional[str]:
        v = as_utc(v)
        return v.isoformat() if v else None

    @classmethod
    def from_row(cls, row) -> "Conversation":
        return cls(
            id=row.id,
            user_id=row.user_id,
            assistant_id=row.assistant_id,
            title=row.title,
            has_thread=bool(row.thread_id),
            devotional_context=row.devotional_context or None,
            last_message_at=row.last_message_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class ConversationUpdate(BaseModel):
    """Schema for updating a conversation. Only the title is user editable."""

    title: Optional[str] = Field(default=None, max_length=255)
    devotional_context: Optional[DevotionalContext] = None


class ConversationList(BaseModel):
    """Schema for listing conversations with pagination."""

    items: List[Conversation]
    total: int
    page: int
    page_size: int


class MessageList(BaseModel):
    """Schema for listing messages with pagination."""

    items: List[Message]
    total: int
    page: int
    page_size: int
    conversation_id: str
