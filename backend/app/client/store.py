import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from ..models.base import as_utc
from ..models.conversation import Conversation, Message, SenderType
from .api import ApiClient, ClientError, with_timeout
from .settings import ClientSettings

logger = logging.getLogger(__name__)

# Ids of messages that exist only on this client
LOCAL_PREFIX = "local-"
WELCOME_PREFIX = "welcome-"
ERROR_PREFIX = "error-"
CLIENT_ONLY_PREFIXES = (LOCAL_PREFIX, WELCOME_PREFIX, ERROR_PREFIX)


def client_message_id(prefix: str = LOCAL_PREFIX) -> str:
    return f"{prefix}{uuid4().hex}"


@dataclass
class ChatMessage:
    id: str
    content: str
    sender: SenderType
    created_at: datetime
    role: Optional[str] = None

    @property
    def is_client_only(self) -> bool:
        return self.id.startswith(CLIENT_ONLY_PREFIXES)

    @classmethod
    def from_api(cls, message: Message, role: Optional[str] = None) -> "ChatMessage":
        return cls(
            id=message.id,
            content=message.content,
            sender=message.sender_type,
            created_at=as_utc(message.created_at),
            role=role if message.sender_type == SenderType.ASSISTANT else None,
        )


class ConversationStore:
    """The conversation shown in the chat pane and its ordered messages.

    Holds at most one conversation. Loads replace the message list and leave
    it sorted by ``created_at``; optimistic messages are appended in place.
    """

    def __init__(self, api: ApiClient, settings: ClientSettings):
        self.api = api
        self.settings = settings
        self.conversation: Optional[Conversation] = None
        self.conversation_id: Optional[str] = None
        self.messages: List[ChatMessage] = []
        self.is_loading = False
        self.is_typing = False
        self.error: Optional[str] = None
        self.loaded = False

    def reset(self) -> None:
        self.conversation = None
        self.conversation_id = None
        self.messages = []
        self.is_loading = False
        self.is_typing = False
        self.error = None
        self.loaded = False

    async def _load_messages(self, conversation: Conversation, role: Optional[str] = None) -> None:
        history = await with_timeout(
            self.api.get_messages(conversation.id), self.settings.MESSAGES_TIMEOUT_S, "Loading messages"
        )
        self.conversation = conversation
        self.conversation_id = conversation.id
        self.messages = sorted((ChatMessage.from_api(m, role) for m in history), key=lambda m: m.created_at)

    async def load_most_recent(self, user_id: str, assistant_id: str, role: Optional[str] = None) -> Optional[Conversation]:
        """Load the newest conversation between ``user_id`` and ``assistant_id``, if any."""
        self.is_loading = True
        self.error = None
        try:
            conversations = await with_timeout(
                self.api.list_conversations(assistant_id, limit=1),
                self.settings.CONVERSATION_LIST_TIMEOUT_S,
                "Loading conversations",
            )
            latest = next((c for c in conversations if c.user_id == user_id), None)
            if latest is None:
                self.conversation = None
                self.conversation_id = None
                self.messages = []
                return None
            await self._load_messages(latest, role)
            logger.info("Loaded conversation %s with %d messages", latest.id, len(self.messages))
            return latest
        except ClientError as e:
            self.error = str(e)
            raise
        finally:
            self.is_loading = False
            self.loaded = True

    async def load_by_id(self, conversation_id: str, role: Optional[str] = None) -> Conversation:
        self.is_loading = True
        self.error = None
        try:
            conversation = await with_timeout(
                self.api.get_conversation(conversation_id), self.settings.MESSAGES_TIMEOUT_S, "Loading conversation"
            )
            await self._load_messages(conversation, role)
            return conversation
        except ClientError as e:
            self.error = str(e)
            raise
        finally:
            self.is_loading = False
            self.loaded = True

    def append(self, message: ChatMessage) -> None:
        self.messages.append(message)

    def replace(self, local_id: str, message: ChatMessage) -> bool:
        for i, existing in enumerate(self.messages):
            if existing.id == local_id:
                self.messages[i] = message
                return True
        return False

    def adopt_conversation(self, conversation_id: str) -> None:
        """Take the id the relay assigned to a conversation this client started."""
        if self.conversation_id != conversation_id:
            logger.info("Adopting conversation %s", conversation_id)
            self.conversation_id = conversation_id


def now_utc() -> datetime:
    return datetime.now(timezone.utc)
