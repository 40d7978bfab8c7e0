from datetime import datetime, timedelta, timezone

import httpx
import pytest

from backend.app.config import Settings
from backend.app.models.assistant import UserRole
from backend.app.models.sql_models import JournalEntry, User
from backend.app.models.user import UserAIPreferencesUpdate
from backend.app.relay.personas import FallbackPersona, ResourceBackedPersona, build_system_prompt, persona_from_row
from backend.app.services.assistants import AssistantService
from backend.app.services.context import build_prompt_context
from backend.app.services.conversations import ConversationService, title_from_message
from backend.app.services.entitlements import EntitlementService, entitlement_active
from backend.app.services.preferences import PreferencesService
from conftest import add_assistant, add_org, add_user


def test_title_from_message():
    assert title_from_message("  Short one ") == "Short one"
    assert title_from_message("x" * 50) == "x" * 50
    assert title_from_message("y" * 51) == "y" * 50 + "..."


def test_effective_assistants_one_per_role_org_wins(db):
    org_id = add_org(db)
    other_org = add_org(db, "Elsewhere")
    add_assistant(db, "Coach")
    org_coach = add_assistant(db, "Coach", org_id=org_id, name="Coach Dana")
    add_assistant(db, "Dad")
    add_assistant(db, "Mom", org_id=other_org)
    add_assistant(db, "Son", is_active=False)

    assistants = AssistantService(db).effective_assistants(org_id)

    assert [a.role for a in assistants] == [UserRole.DAD, UserRole.COACH]
    assert assistants[1].id == org_coach
    assert assistants[1].name == "Coach Dana"


def test_find_for_role_prefers_backing_resource(db):
    add_assistant(db, "Mom")
    backed = add_assistant(db, "Mom", openai_assistant_id="asst_mom")

    row = AssistantService(db).find_for_role(UserRole.MOM, None)

    assert row.id == backed
    assert isinstance(persona_from_row(UserRole.MOM, row), ResourceBackedPersona)
    assert AssistantService(db).find_for_role(UserRole.DAUGHTER, None) is None


def test_persona_variants():
    persona = persona_from_row(UserRole.SON, None)
    assert isinstance(persona, FallbackPersona)
    assert persona.conversation_ref == "fallback:Son"
    assert "young man" in build_system_prompt(persona)
    assert "Guidelines:" in build_system_prompt(persona)


def test_prompt_context_follows_preferences(db):
    user_id = add_user(db, first_name="Ana")
    user = db.get(User, user_id)
    conv = ConversationService(db).create(
        user_id,
        "fallback:Coach",
        devotional_context={"scripture_reference": "Philippians 4:13", "week_theme": "Strength"},
    )
    db.add(JournalEntry(user_id=user_id, entry_text="Long day", emotion_tag="tired"))
    db.commit()

    context = build_prompt_context(db, user, conv)
    assert context.user_name == "Ana"
    assert context.devotional_context["scripture_reference"] == "Philippians 4:13"
    assert context.journal_emotions == []

    PreferencesService(db).update(
        user_id,
        UserAIPreferencesUpdate(include_journal_history=True, include_devotional_context=False, conversation_style="brief"),
    )
    context = build_prompt_context(db, user, conv)
    assert context.devotional_context is None
    assert context.journal_emotions == ["tired"]

    prompt = build_system_prompt(FallbackPersona(role=UserRole.COACH), context)
    assert "tired" in prompt
    assert "Keep this reply short" in prompt


def test_preferences_created_lazily_and_partially_updated(db):
    user_id = add_user(db)
    service = PreferencesService(db)
    assert service.find(user_id) is None
    assert service.preferred_role(user_id) is None

    prefs = service.get_or_create(user_id)
    assert prefs.include_devotional_context is True
    assert prefs.conversation_style == "balanced"

    updated = service.update(user_id, UserAIPreferencesUpdate(preferred_assistant_role=UserRole.MOM))
    assert updated.preferred_assistant_role == UserRole.MOM
    assert updated.include_devotional_context is True
    assert service.preferred_role(user_id) == UserRole.MOM


def test_conversation_listing_order_and_recent_turns(db):
    user_id = add_user(db)
    service = ConversationService(db)
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    older = service.create(user_id, "fallback:Dad", title="older").id
    newer = service.create(user_id, "fallback:Dad", title="newer").id
    service.touch(older, base + timedelta(hours=2))
    service.touch(newer, base + timedelta(hours=1))

    rows, total = service.list_for_user(user_id)
    assert total == 2
    assert [r.id for r in rows] == [older, newer]

    service.add_turns(older, "q1", "a1", base, base + timedelta(seconds=1))
    service.add_turns(older, "q2", "a2", base + timedelta(seconds=2), base + timedelta(seconds=3))
    assert service.recent_turns(older, 3) == [
        {"role": "assistant", "content": "a1"},
        {"role": "user", "content": "q2"},
        {"role": "assistant", "content": "a2"},
    ]
    assert service.recent_turns(older, 0) == []


def test_entitlement_active_rules():
    now = datetime(2026, 5, 1, tzinfo=timezone.utc)
    subscriber = {
        "entitlements": {
            "pro_user": {"expires_date": "2026-06-01T00:00:00Z"},
            "lifetime": {"expires_date": None},
            "lapsed": {"expires_date": "2026-04-01T00:00:00Z"},
        }
    }
    assert entitlement_active(subscriber, "pro_user", now) is True
    assert entitlement_active(subscriber, "lifetime", now) is True
    assert entitlement_active(subscriber, "lapsed", now) is False
    assert entitlement_active(subscriber, "missing", now) is False


@pytest.mark.anyio
async def test_entitlement_service_without_key_is_false():
    service = EntitlementService(Settings(REVENUECAT_API_KEY=""))
    assert await service.has_active_entitlement("u-1", "pro_user") is False


@pytest.mark.anyio
async def test_entitlement_service_queries_revenuecat():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={"subscriber": {"entitlements": {"pro_user": {"expires_date": None}}}})

    settings = Settings(REVENUECAT_API_KEY="rc_key", REVENUECAT_API_URL="https://rc.test/v1")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        service = EntitlementService(settings, client=client)
        assert await service.has_active_entitlement("u-1", "pro_user") is True
        assert await service.has_active_entitlement("u-1", "other") is False

    assert seen["url"] == "https://rc.test/v1/subscribers/u-1"
    assert seen["auth"] == "Bearer rc_key"


@pytest.mark.anyio
async def test_entitlement_service_upstream_error_is_false():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"message": "unavailable"})

    settings = Settings(REVENUECAT_API_KEY="rc_key")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        service = EntitlementService(settings, client=client)
        assert await service.has_active_entitlement("u-1") is False


@pytest.mark.anyio
@pytest.mark.parametrize(
    "payload",
    [
        [],
        "pro_user",
        {"subscriber": ["pro_user"]},
        {"subscriber": {"entitlements": ["pro_user"]}},
        {"subscriber": {"entitlements": {"pro_user": True}}},
        {"subscriber": {"entitlements": {"pro_user": {"expires_date": 1767225600}}}},
    ],
)
async def test_entitlement_service_malformed_payload_is_false(payload):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    settings = Settings(REVENUECAT_API_KEY="rc_key")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        service = EntitlementService(settings, client=client)
        assert await service.has_active_entitlement("u-1", "pro_user") is False
