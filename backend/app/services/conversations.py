import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.base import get_db
from ..models.conversation import DevotionalContext, SenderType
from ..models.sql_models import AIConversation as SQLConversation
from ..models.sql_models import AIMessage as SQLMessage

logger = logging.getLogger(__name__)

TITLE_LENGTH = 50


def title_from_message(message: str) -> str:
    """First 50 characters of the opening message, with an ellipsis when cut."""
    text = message.strip()
    return text[:TITLE_LENGTH] + ("..." if len(text) > TITLE_LENGTH else "")


class ConversationService:
    """Conversation and message access on top of one database session.

    Every write commits on its own; a multi-step flow (create conversation,
    write turns, bump the timestamp) may stop half way and callers must
    tolerate that.
    """

    def __init__(self, db: Session):
        self.db = db

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def get_owned(
        self, conversation_id: str, user_id: str, assistant_id: Optional[str] = None
    ) -> Optional[SQLConversation]:
        """Return the conversation when it belongs to ``user_id`` (and ``assistant_id`` if given)."""
        q = self.db.query(SQLConversation).filter(
            SQLConversation.id == conversation_id,
            SQLConversation.user_id == user_id,
        )
        if assistant_id is not None:
            q = q.filter(SQLConversation.assistant_id == assistant_id)
        return q.first()

    def create(
        self,
        user_id: str,
        assistant_id: str,
        title: Optional[str] = None,
        thread_id: Optional[str] = None,
        devotional_context: Optional[Dict[str, Any]] = None,
    ) -> SQLConversation:
        now = datetime.now(timezone.utc)
        conversation = SQLConversation(
            user_id=user_id,
            assistant_id=assistant_id,
            title=title,
            thread_id=thread_id,
            devotional_context=devotional_context,
            last_message_at=now,
            created_at=now,
        )
        self.db.add(conversation)
        self._commit()
        self.db.refresh(conversation)
        logger.info("Created conversation %s for user %s with assistant %s", conversation.id, user_id, assistant_id)
        return conversation

    def attach_thread(self, conversation: SQLConversation, thread_id: str) -> None:
        conversation.thread_id = thread_id
        self._commit()

    def touch(self, conversation_id: str, at: Optional[datetime] = None) -> None:
        """Set last_message_at. Concurrent writers race; the last one wins."""
        self.db.query(SQLConversation).filter(SQLConversation.id == conversation_id).update(
            {SQLConversation.last_message_at: at or datetime.now(timezone.utc)},
            synchronize_session=False,
        )
        self._commit()

    def update(
        self,
        conversation: SQLConversation,
        title: Optional[str] = None,
        devotional_context: Optional[DevotionalContext] = None,
    ) -> SQLConversation:
        if title is not None:
            conversation.title = title
        if devotional_context is not None:
            conversation.devotional_context = devotional_context.model_dump(exclude_none=True)
        self._commit()
        self.db.refresh(conversation)
        return conversation

    def add_turns(
        self,
        conversation_id: str,
        user_text: str,
        assistant_text: str,
        user_at: datetime,
        assistant_at: datetime,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[SQLMessage, SQLMessage]:
        """Write the user turn and the assistant turn of one exchange."""
        user_msg = SQLMessage(
            conversation_id=conversation_id,
            sender_type=SenderType.USER.value,
            content=user_text,
            metadata_json={},
            created_at=user_at,
        )
        assistant_msg = SQLMessage(
            conversation_id=conversation_id,
            sender_type=SenderType.ASSISTANT.value,
            content=assistant_text,
            metadata_json=metadata or {},
            created_at=assistant_at,
        )
        self.db.add_all([user_msg, assistant_msg])
        self._commit()
        return user_msg, assistant_msg

    def list_for_user(
        self,
        user_id: str,
        assistant_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[SQLConversation], int]:
        """A user's conversations, most recently active first."""
        q = self.db.query(SQLConversation).filter(SQLConversation.user_id == user_id)
        if assistant_id is not None:
            q = q.filter(SQLConversation.assistant_id == assistant_id)
        total = q.count()
        rows = (
            q.order_by(SQLConversation.last_message_at.desc(), SQLConversation.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return rows, total

    def history(self, conversation_id: str, skip: int = 0, limit: int = 100) -> Tuple[List[SQLMessage], int]:
        """Messages of a conversation, oldest first."""
        q = self.db.query(SQLMessage).filter(SQLMessage.conversation_id == conversation_id)
        total = q.count()
        rows = q.order_by(SQLMessage.created_at.asc()).offset(skip).limit(limit).all()
        return rows, total

    def recent_turns(self, conversation_id: str, limit: int) -> List[Dict[str, str]]:
        """The last ``limit`` messages as chat-completion turns, oldest first."""
        if limit <= 0:
            return []
        rows = (
            self.db.query(SQLMessage)
            .filter(SQLMessage.conversation_id == conversation_id)
            .order_by(SQLMessage.created_at.desc())
            .limit(limit)
            .all()
        )
        turns: List[Dict[str, str]] = []
        for r in reversed(rows):
            if r.sender_type in (SenderType.USER.value, SenderType.ASSISTANT.value):
                turns.append({"role": r.sender_type, "content": r.content or ""})
        return turns


def get_conversation_service(db: Session = Depends(get_db)) -> ConversationService:
    """Dependency for getting the conversation service."""
    return ConversationService(db)
