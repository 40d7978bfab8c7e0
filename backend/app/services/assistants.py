import logging
from typing import Dict, List, Optional

from fastapi import Depends
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..db.base import get_db
from ..models.assistant import ROLE_ORDER, Assistant, UserRole
from ..models.sql_models import AIAssistant as SQLAssistant

logger = logging.getLogger(__name__)


class AssistantService:
    """Read-only access to assistant personas.

    Global personas (``org_id`` NULL) are merged with the caller's
    organization personas; when both exist for a role the organization's
    persona wins, so each role has at most one effective assistant.
    """

    def __init__(self, db: Session):
        self.db = db

    def visible_rows(self, org_id: Optional[str], role: Optional[UserRole] = None) -> List[SQLAssistant]:
        q = self.db.query(SQLAssistant).filter(SQLAssistant.is_active.is_(True))
        if org_id:
            q = q.filter(or_(SQLAssistant.org_id.is_(None), SQLAssistant.org_id == org_id))
        else:
            q = q.filter(SQLAssistant.org_id.is_(None))
        if role is not None:
            q = q.filter(SQLAssistant.user_role == role.value)
        return q.all()

    def _effective_by_role(self, rows: List[SQLAssistant]) -> Dict[UserRole, SQLAssistant]:
        chosen: Dict[UserRole, SQLAssistant] = {}
        for row in rows:
            role = UserRole.parse(row.user_role)
            if role is None:
                logger.warning("Ignoring assistant %s with unknown role %r", row.id, row.user_role)
                continue
            current = chosen.get(role)
            if current is None or _rank(row) > _rank(current):
                chosen[role] = row
        return chosen

    def effective_assistants(self, org_id: Optional[str]) -> List[Assistant]:
        """One representative persona per role, in display order."""
        chosen = self._effective_by_role(self.visible_rows(org_id))
        return [Assistant.from_row(chosen[role]) for role in sorted(chosen, key=ROLE_ORDER.get)]

    def find_for_role(self, role: UserRole, org_id: Optional[str]) -> Optional[SQLAssistant]:
        """The effective persona row for ``role``, or None when none is active."""
        return self._effective_by_role(self.visible_rows(org_id, role)).get(role)


def _rank(row: SQLAssistant) -> tuple:
    # Organization personas outrank global ones, then a provisioned backing resource, then recency
    created = row.created_at.timestamp() if row.created_at else 0.0
    return (row.org_id is not None, bool(row.openai_assistant_id), created)


def get_assistant_service(db: Session = Depends(get_db)) -> AssistantService:
    """Dependency for getting the assistant service."""
    return AssistantService(db)
