from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .conversation import RelayMode


class SendMessageRequest(BaseModel):
    """Body of a relay call. Field names follow the client's camelCase wire format."""

    user_id: Optional[str] = Field(default=None, alias="userId")
    message: Optional[str] = None
    assistant_role: Optional[str] = Field(default=None, alias="assistantRole")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("user_id", "message", "assistant_role", "conversation_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def missing_required(self) -> bool:
        return not self.user_id or not self.message


class SendMessageResponse(BaseModel):
    success: bool = True
    message: str
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    assistant_role: str = Field(alias="assistantRole")
    mode: RelayMode

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
