from enum import Enum
from typing import Optional

from .base import BaseDBModel


class UserRole(str, Enum):
    """Fixed set of persona roles. Declaration order is the display order."""

    DAD = "Dad"
    MOM = "Mom"
    COACH = "Coach"
    SON = "Son"
    DAUGHTER = "Daughter"
    CHURCH_LEADER = "Church Leader"
    SINGLE_MAN = "Single Man"
    SINGLE_WOMAN = "Single Woman"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["UserRole"]:
        """Return the role for a stored or submitted tag, or None when unknown."""
        if not value:
            return None
        for role in cls:
            if role.value.lower() == value.strip().lower():
                return role
        return None


ROLE_ORDER = {role: index for index, role in enumerate(UserRole)}


class Assistant(BaseDBModel):
    """Assistant persona as exposed to clients.

    The backing OpenAI assistant handle is reduced to a flag; clients never
    need the identifier itself.
    """

    org_id: Optional[str] = None
    role: UserRole
    name: str
    description: Optional[str] = None
    is_active: bool = True
    has_backing_resource: bool = False

    @classmethod
    def from_row(cls, row) -> "Assistant":
        return cls(
            id=row.id,
            org_id=row.org_id,
            role=UserRole.parse(row.user_role),
            name=row.name,
            description=row.description,
            is_active=bool(row.is_active),
            has_backing_resource=bool(row.openai_assistant_id),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
