import logging
from datetime import timedelta
from enum import Enum
from typing import List, Optional

from ..models.assistant import Assistant
from ..models.conversation import Conversation, SenderType
from .api import ApiClient, ClientError, with_timeout
from .auth import AuthStateMachine
from .settings import ClientSettings
from .store import (
    ERROR_PREFIX,
    LOCAL_PREFIX,
    WELCOME_PREFIX,
    ChatMessage,
    ConversationStore,
    client_message_id,
    now_utc,
)

logger = logging.getLogger(__name__)

APOLOGY = "I apologize, but I encountered an issue. Please try again."
CONNECTION_PROBE = "Hello"


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    TESTING = "testing"


def greeting_for(assistant: Assistant) -> str:
    description = assistant.description or f"{assistant.role.value} companion"
    return (
        f"Hello! I'm {assistant.name}, your {description}. "
        "I'm here to support you on your spiritual journey. How can I help you today?"
    )


class ChatOrchestrator:
    """Binds the selected assistant, the conversation store and the relay.

    One send may be in flight at a time. A send that is cancelled, or
    superseded by switching assistant or conversation, has its result
    dropped. Nothing is retried.
    """

    def __init__(
        self,
        api: ApiClient,
        auth: AuthStateMachine,
        settings: ClientSettings,
        store: Optional[ConversationStore] = None,
    ):
        self.api = api
        self.auth = auth
        self.settings = settings
        self.store = store or ConversationStore(api, settings)
        self.assistants: List[Assistant] = []
        self.assistant: Optional[Assistant] = None
        self.connection_status = ConnectionStatus.DISCONNECTED
        self.error: Optional[str] = None
        self._in_flight: Optional[object] = None

    @property
    def is_sending(self) -> bool:
        return self._in_flight is not None

    def _greet(self) -> None:
        if self.assistant is None:
            return
        self.store.append(
            ChatMessage(
                id=client_message_id(WELCOME_PREFIX),
                content=greeting_for(self.assistant),
                sender=SenderType.ASSISTANT,
                created_at=now_utc(),
                role=self.assistant.role.value,
            )
        )
        self.store.loaded = True

    def cancel(self) -> bool:
        """Abandon the in-flight send; its reply, if it arrives, is ignored."""
        if self._in_flight is None:
            return False
        self._in_flight = None
        self.store.is_typing = False
        logger.info("In-flight send cancelled")
        return True

    async def load_assistants(self) -> List[Assistant]:
        """Fetch the assistants the user can talk to; an empty list on failure."""
        try:
            self.assistants = await with_timeout(
                self.api.list_assistants(),
                self.settings.ASSISTANTS_TIMEOUT_S,
                "Loading assistants",
            )
        except ClientError as e:
            logger.warning("Could not load assistants: %s", e)
            self.error = str(e)
            self.assistants = []
        return self.assistants

    async def select_assistant(self, assistant: Assistant) -> None:
        self.cancel()
        self.assistant = assistant
        self.error = None
        self.store.reset()

        user_id = self.auth.user_id
        if user_id is None:
            self._greet()
            return
        try:
            await self.store.load_most_recent(user_id, assistant.id, assistant.role.value)
        except ClientError as e:
            logger.warning("Could not load the latest conversation with %s: %s", assistant.name, e)
            self.error = str(e)
        if not self.store.messages:
            self._greet()

    async def start_new_conversation(self) -> None:
        self.cancel()
        self.error = None
        self.store.reset()
        self._greet()

    async def load_conversation(self, conversation_id: str) -> bool:
        self.cancel()
        self.error = None
        role = self.assistant.role.value if self.assistant else None
        try:
            await self.store.load_by_id(conversation_id, role)
        except ClientError as e:
            self.error = str(e)
            return False
        return True

    async def list_conversations(self) -> List[Conversation]:
        if self.assistant is None or not self.auth.is_authenticated:
            return []
        return await with_timeout(
            self.api.list_conversations(self.assistant.id, limit=self.settings.HISTORY_LIMIT),
            self.settings.CONVERSATION_LIST_TIMEOUT_S,
            "Loading conversation history",
        )

    async def send_message(self, text: str) -> Optional[ChatMessage]:
        """Send ``text`` to the selected assistant.

        Returns the assistant bubble that was appended (the reply or the
        apology), or None when the send was refused or its result dropped.
        """
        text = (text or "").strip()
        user_id = self.auth.user_id
        if not text or self.assistant is None or not self.assistant.id or user_id is None:
            return None
        if self._in_flight is not None:
            logger.info("Send refused: another message is in flight")
            return None

        token = object()
        self._in_flight = token
        self.error = None
        assistant = self.assistant
        sent = ChatMessage(
            id=client_message_id(LOCAL_PREFIX), content=text, sender=SenderType.USER, created_at=now_utc()
        )
        self.store.append(sent)
        self.store.is_typing = True

        failure: Optional[ClientError] = None
        try:
            reply = await with_timeout(
                self.api.send_to_relay(user_id, text, assistant.role.value, self.store.conversation_id),
                self.settings.SEND_TIMEOUT_S,
                "Sending message",
            )
        except ClientError as e:
            failure = e
        finally:
            superseded = self._in_flight is not token
            if not superseded:
                self._in_flight = None
                self.store.is_typing = False

        if superseded:
            logger.info("Dropping the result of a cancelled send")
            return None

        # Keep the reply after the optimistic user bubble on a coarse clock
        at = max(now_utc(), sent.created_at + timedelta(microseconds=1))
        if failure is not None:
            logger.warning("Send failed: %s", failure)
            self.error = str(failure)
            self.connection_status = ConnectionStatus.DISCONNECTED
            bubble = ChatMessage(
                id=client_message_id(ERROR_PREFIX), content=APOLOGY, sender=SenderType.ASSISTANT, created_at=at
            )
            self.store.append(bubble)
            return bubble

        if reply.conversation_id:
            self.store.adopt_conversation(reply.conversation_id)
        bubble = ChatMessage(
            id=client_message_id(LOCAL_PREFIX),
            content=reply.message,
            sender=SenderType.ASSISTANT,
            created_at=at,
            role=reply.assistant_role,
        )
        self.store.append(bubble)
        self.connection_status = ConnectionStatus.CONNECTED
        return bubble

    async def test_connection(self) -> ConnectionStatus:
        """Probe the relay with a short message and record the outcome."""
        user_id = self.auth.user_id
        if self.assistant is None or not self.assistant.id or user_id is None:
            self.connection_status = ConnectionStatus.DISCONNECTED
            self.error = "Assistant not configured" if user_id else "Not signed in"
            return self.connection_status

        self.connection_status = ConnectionStatus.TESTING
        try:
            await with_timeout(
                self.api.send_to_relay(user_id, CONNECTION_PROBE, self.assistant.role.value),
                self.settings.CONNECTION_TEST_TIMEOUT_S,
                "Connection test",
            )
        except ClientError as e:
            logger.warning("Connection test failed: %s", e)
            self.connection_status = ConnectionStatus.DISCONNECTED
            self.error = str(e)
        else:
            self.connection_status = ConnectionStatus.CONNECTED
        return self.connection_status
