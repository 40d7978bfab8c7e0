from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .assistant import UserRole
from .base import BaseDBModel


class UserBase(BaseDBModel):
    """Base user model with common fields."""

    email: EmailStr
    first_name: Optional[str] = None
    user_role: Optional[str] = None
    org_id: Optional[str] = None
    is_active: bool = True
    last_login: Optional[datetime] = None


class UserCreate(BaseModel):
    """Schema for creating a new user."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    first_name: Optional[str] = None
    user_role: Optional[str] = None
    org_id: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password_strength(cls, v):
        if not any(c.isupper() for c in v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not any(c.islower() for c in v):
            raise ValueError("Password must contain at least one lowercase letter")
        if not any(c.isdigit() for c in v):
            raise ValueError("Password must contain at least one number")
        return v

    @field_validator("user_role")
    @classmethod
    def validate_user_role(cls, v):
        if v is not None and UserRole.parse(v) is None:
            raise ValueError(f"Unknown role: {v}")
        return v


class User(UserBase):
    """User model for API responses."""

    @classmethod
    def from_row(cls, row) -> "User":
        return cls(
            id=row.id,
            email=row.email,
            first_name=row.first_name,
            user_role=row.user_role,
            org_id=row.org_id,
            is_active=bool(row.is_active),
            last_login=row.last_login,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class Token(BaseModel):
    """Schema for authentication tokens."""

    access_token: str
    token_type: str = "bearer"
    refresh_token: str
    expires_in: int
    user_id: str


class TokenData(BaseModel):
    """Schema for token data."""

    sub: Optional[str] = None
    type: Optional[str] = None


ConversationStyle = Literal["brief", "balanced", "detailed"]


class UserAIPreferences(BaseModel):
    """Per-user context toggles folded into the assistant prompt."""

    user_id: str
    preferred_assistant_role: Optional[UserRole] = None
    include_devotional_context: bool = True
    include_journal_history: bool = False
    include_fitness_progress: bool = False
    conversation_style: ConversationStyle = "balanced"

    @classmethod
    def from_row(cls, row) -> "UserAIPreferences":
        return cls(
            user_id=row.user_id,
            preferred_assistant_role=UserRole.parse(row.preferred_assistant_role),
            include_devotional_context=bool(row.include_devotional_context),
            include_journal_history=bool(row.include_journal_history),
            include_fitness_progress=bool(row.include_fitness_progress),
            conversation_style=row.conversation_style or "balanced",
        )


class UserAIPreferencesUpdate(BaseModel):
    """Partial update for preferences; unset fields are left untouched."""

    preferred_assistant_role: Optional[UserRole] = None
    include_devotional_context: Optional[bool] = None
    include_journal_history: Optional[bool] = None
    include_fitness_progress: Optional[bool] = None
    conversation_style: Optional[ConversationStyle] = None
