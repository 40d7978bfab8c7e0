import logging
from typing import Optional

from fastapi import Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.base import get_db
from ..models.assistant import UserRole
from ..models.sql_models import UserAIPreferences as SQLPreferences
from ..models.user import UserAIPreferences, UserAIPreferencesUpdate

logger = logging.getLogger(__name__)


class PreferencesService:
    """User AI preferences, created with defaults on first access."""

    def __init__(self, db: Session):
        self.db = db

    def find(self, user_id: str) -> Optional[SQLPreferences]:
        return self.db.query(SQLPreferences).filter(SQLPreferences.user_id == user_id).first()

    def get_or_create(self, user_id: str) -> UserAIPreferences:
        row = self.find(user_id)
        if row is None:
            row = SQLPreferences(
                user_id=user_id,
                include_devotional_context=True,
                include_journal_history=False,
                include_fitness_progress=False,
                conversation_style="balanced",
            )
            self.db.add(row)
            try:
                self.db.commit()
            except IntegrityError:
                # Another request created the row first
                self.db.rollback()
                row = self.find(user_id)
            else:
                self.db.refresh(row)
                logger.info("Created default AI preferences for user %s", user_id)
        return UserAIPreferences.from_row(row)

    def update(self, user_id: str, changes: UserAIPreferencesUpdate) -> UserAIPreferences:
        self.get_or_create(user_id)
        row = self.find(user_id)
        for field, value in changes.model_dump(exclude_unset=True).items():
            if field == "preferred_assistant_role" and value is not None:
                value = UserRole(value).value
            setattr(row, field, value)
        self.db.commit()
        self.db.refresh(row)
        return UserAIPreferences.from_row(row)

    def preferred_role(self, user_id: str) -> Optional[UserRole]:
        """Stored preferred role without creating a preferences row."""
        row = self.find(user_id)
        return UserRole.parse(row.preferred_assistant_role) if row else None


def get_preferences_service(db: Session = Depends(get_db)) -> PreferencesService:
    """Dependency for getting the preferences service."""
    return PreferencesService(db)
