from typing import Optional

from sqlalchemy.orm import Session

from ..models.sql_models import AIConversation as SQLConversation
from ..models.sql_models import JournalEntry as SQLJournalEntry
from ..models.sql_models import User as SQLUser
from ..relay.personas import PromptContext
from .preferences import PreferencesService

JOURNAL_ENTRY_LIMIT = 5


def build_prompt_context(
    db: Session,
    user: Optional[SQLUser],
    conversation: Optional[SQLConversation] = None,
) -> PromptContext:
    """Collect the user context the preferences allow into the prompt."""
    if user is None:
        return PromptContext()

    prefs = PreferencesService(db).get_or_create(user.id)
    context = PromptContext(
        user_name=user.first_name,
        conversation_style=prefs.conversation_style,
        fitness_enabled=prefs.include_fitness_progress,
    )

    if prefs.include_devotional_context and conversation is not None and conversation.devotional_context:
        context.devotional_context = dict(conversation.devotional_context)

    if prefs.include_journal_history:
        entries = (
            db.query(SQLJournalEntry)
            .filter(SQLJournalEntry.user_id == user.id)
            .order_by(SQLJournalEntry.created_at.desc())
            .limit(JOURNAL_ENTRY_LIMIT)
            .all()
        )
        context.journal_emotions = [e.emotion_tag for e in entries if e.emotion_tag]

    return context
