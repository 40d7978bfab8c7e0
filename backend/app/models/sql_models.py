from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from ..db.base import Base


def generate_uuid():
    return str(uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class Organization(Base):
    """SQLAlchemy model for church/ministry organizations."""

    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    users = relationship("User", back_populates="organization")

    def __repr__(self):
        return f"<Organization(id='{self.id}', name='{self.name}')>"


class User(Base):
    """SQLAlchemy model for users."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    # Household role chosen during onboarding (Dad, Mom, ...)
    user_role = Column(String(50), nullable=True)
    org_id = Column(String(36), ForeignKey("organizations.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow, nullable=True)

    organization = relationship("Organization", back_populates="users")
    conversations = relationship("AIConversation", back_populates="user")

    def __repr__(self):
        return f"<User(id='{self.id}', email='{self.email}')>"


class AIAssistant(Base):
    """SQLAlchemy model for assistant personas. Managed by administrators."""

    __tablename__ = "ai_assistants"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    # NULL means the persona is visible to every organization
    org_id = Column(String(36), ForeignKey("organizations.id"), nullable=True, index=True)
    user_role = Column(String(50), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    personality_prompt = Column(Text, nullable=False, default="")
    openai_assistant_id = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow, nullable=True)

    def __repr__(self):
        return f"<AIAssistant(id='{self.id}', user_role='{self.user_role}', org_id={self.org_id!r})>"


class AIConversation(Base):
    """SQLAlchemy model for conversations between one user and one persona."""

    __tablename__ = "ai_conversations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    # Either an ai_assistants.id or a "fallback:<role>" placeholder, so no foreign key
    assistant_id = Column(String(100), nullable=False, index=True)
    title = Column(String(255), nullable=True)
    thread_id = Column(String(100), nullable=True)
    devotional_context = Column(JSON, nullable=True)
    last_message_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow, nullable=True)

    user = relationship("User", back_populates="conversations")
    messages = relationship("AIMessage", back_populates="conversation", order_by="AIMessage.created_at")

    def __repr__(self):
        return f"<AIConversation(id='{self.id}', title='{self.title}')>"


class AIMessage(Base):
    """SQLAlchemy model for a single conversation turn. Rows are never updated."""

    __tablename__ = "ai_messages"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    conversation_id = Column(String(36), ForeignKey("ai_conversations.id"), nullable=False, index=True)
    sender_type = Column(String(20), nullable=False)  # 'user' or 'assistant'
    content = Column(Text, nullable=False)
    metadata_json = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    conversation = relationship("AIConversation", back_populates="messages")

    def __repr__(self):
        return f"<AIMessage(id='{self.id}', sender_type='{self.sender_type}')>"


class UserAIPreferences(Base):
    """SQLAlchemy model for per-user prompt context toggles."""

    __tablename__ = "user_ai_preferences"

    user_id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    preferred_assistant_role = Column(String(50), nullable=True)
    include_devotional_context = Column(Boolean, default=True, nullable=False)
    include_journal_history = Column(Boolean, default=False, nullable=False)
    include_fitness_progress = Column(Boolean, default=False, nullable=False)
    conversation_style = Column(String(20), default="balanced", nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow, nullable=True)

    def __repr__(self):
        return f"<UserAIPreferences(user_id='{self.user_id}')>"


class JournalEntry(Base):
    """SQLAlchemy model for journal entries (written by the journaling feature)."""

    __tablename__ = "journal_entries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    entry_text = Column(Text, nullable=False)
    emotion_tag = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<JournalEntry(id='{self.id}', emotion_tag={self.emotion_tag!r})>"
