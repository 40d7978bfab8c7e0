#!/usr/bin/env python3
""" Initialize the database, create all tables and seed one global persona per role. """
import sys
from pathlib import Path

# Add the repository root to the Python path
sys.path.append(str(Path(__file__).resolve().parents[2]))

from backend.app.db.base import SessionLocal, init_db  # noqa: E402
from backend.app.models.assistant import UserRole  # noqa: E402
from backend.app.models.sql_models import AIAssistant  # noqa: E402
from backend.app.relay.personas import ROLE_PROMPTS  # noqa: E402

DESCRIPTIONS = {
    UserRole.DAD: "A patient father figure for leadership, family and faith",
    UserRole.MOM: "A nurturing voice for feelings, hope and hard seasons",
    UserRole.COACH: "Goals, discipline and next steps for body and spirit",
    UserRole.SON: "A peer companion for growing up in faith",
    UserRole.DAUGHTER: "Identity, purpose and relationships for young women",
    UserRole.CHURCH_LEADER: "Scripture, theology and pastoral care",
    UserRole.SINGLE_MAN: "Purpose and character for single men",
    UserRole.SINGLE_WOMAN: "Community and calling for single women",
}


def seed_global_assistants(db) -> int:
    """Insert a global persona for every role that has none. Returns the number added."""
    added = 0
    for role in UserRole:
        exists = (
            db.query(AIAssistant)
            .filter(AIAssistant.org_id.is_(None), AIAssistant.user_role == role.value)
            .first()
        )
        if exists:
            continue
        db.add(
            AIAssistant(
                org_id=None,
                user_role=role.value,
                name=f"{role.value} Assistant",
                description=DESCRIPTIONS[role],
                personality_prompt=ROLE_PROMPTS[role],
                is_active=True,
            )
        )
        added += 1
    db.commit()
    return added


if __name__ == "__main__":
    print("Initializing database...")
    init_db()
    db = SessionLocal()
    try:
        print(f"Seeded {seed_global_assistants(db)} global assistant(s)")
    finally:
        db.close()
    print("Database initialization complete!")
