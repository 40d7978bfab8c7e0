from datetime import datetime, timedelta, timezone

import pytest

from backend.app.main import app
from backend.app.services.conversations import ConversationService
from backend.app.services.entitlements import get_entitlement_service
from conftest import PASSWORD, add_assistant, add_org, add_user, bearer


@pytest.mark.anyio
async def test_health(api_client):
    res = await api_client.get("/api/health")
    assert res.status_code == 200
    assert res.json()["status"] == "healthy"


@pytest.mark.anyio
async def test_register_login_me_refresh(api_client):
    res = await api_client.post(
        "/api/v1/auth/register",
        json={"email": "ruth@example.com", "password": PASSWORD, "first_name": "Ruth", "user_role": "Mom"},
    )
    assert res.status_code == 201, res.text
    user_id = res.json()["id"]

    dup = await api_client.post("/api/v1/auth/register", json={"email": "ruth@example.com", "password": PASSWORD})
    assert dup.status_code == 400

    bad = await api_client.post("/api/v1/auth/login", data={"username": "ruth@example.com", "password": "nope"})
    assert bad.status_code == 401

    res = await api_client.post("/api/v1/auth/login", data={"username": "ruth@example.com", "password": PASSWORD})
    assert res.status_code == 200
    tokens = res.json()
    assert tokens["user_id"] == user_id

    me = await api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert me.json()["first_name"] == "Ruth"

    # A refresh token is not accepted as an access token
    me = await api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
    assert me.status_code == 401

    res = await api_client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert res.status_code == 200
    assert res.json()["user_id"] == user_id


@pytest.mark.anyio
async def test_weak_password_rejected(api_client):
    res = await api_client.post("/api/v1/auth/register", json={"email": "a@example.com", "password": "lowercase1"})
    assert res.status_code == 422


@pytest.mark.anyio
async def test_requires_token(api_client):
    res = await api_client.get("/api/v1/conversations")
    assert res.status_code == 401


@pytest.mark.anyio
async def test_assistants_visible_to_user(api_client, db):
    org_id = add_org(db)
    user_id = add_user(db, org_id=org_id)
    add_assistant(db, "Dad", openai_assistant_id="asst_dad")
    org_mom = add_assistant(db, "Mom", org_id=org_id)

    res = await api_client.get("/api/v1/assistants", headers=bearer(user_id))

    assert res.status_code == 200
    data = res.json()
    assert [a["role"] for a in data] == ["Dad", "Mom"]
    assert data[0]["has_backing_resource"] is True
    assert data[1]["id"] == org_mom
    assert "openai_assistant_id" not in data[0]


@pytest.mark.anyio
async def test_conversations_listed_newest_activity_first(api_client, db):
    user_id = add_user(db)
    other_id = add_user(db, email="kim@example.com")
    service = ConversationService(db)
    base = datetime(2026, 3, 1, tzinfo=timezone.utc)
    a = service.create(user_id, "fallback:Coach", title="a").id
    b = service.create(user_id, "fallback:Coach", title="b").id
    c = service.create(user_id, "fallback:Dad", title="c").id
    service.create(other_id, "fallback:Coach", title="theirs")
    service.touch(a, base + timedelta(minutes=3))
    service.touch(b, base + timedelta(minutes=5))
    service.touch(c, base + timedelta(minutes=9))

    res = await api_client.get("/api/v1/conversations", params={"assistant_id": "fallback:Coach"}, headers=bearer(user_id))
    assert res.status_code == 200
    data = res.json()
    assert [item["id"] for item in data["items"]] == [b, a]
    assert data["total"] == 2

    res = await api_client.get("/api/v1/conversations", params={"limit": 1}, headers=bearer(user_id))
    assert [item["id"] for item in res.json()["items"]] == [c]
    assert res.json()["items"][0]["last_message_at"].endswith("+00:00")


@pytest.mark.anyio
async def test_conversation_ownership_enforced(api_client, db):
    owner_id = add_user(db)
    other_id = add_user(db, email="kim@example.com")
    conv_id = ConversationService(db).create(owner_id, "fallback:Mom", title="private").id

    for path in (f"/api/v1/conversations/{conv_id}", f"/api/v1/conversations/{conv_id}/messages"):
        res = await api_client.get(path, headers=bearer(other_id))
        assert res.status_code == 404

    res = await api_client.put(f"/api/v1/conversations/{conv_id}", json={"title": "mine now"}, headers=bearer(other_id))
    assert res.status_code == 404


@pytest.mark.anyio
async def test_messages_ascending_and_title_update(api_client, db):
    user_id = add_user(db)
    service = ConversationService(db)
    conv_id = service.create(user_id, "fallback:Mom", title="first").id
    t0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
    service.add_turns(conv_id, "later question", "later answer", t0 + timedelta(minutes=5), t0 + timedelta(minutes=6))
    service.add_turns(conv_id, "early question", "early answer", t0, t0 + timedelta(seconds=1))

    res = await api_client.get(f"/api/v1/conversations/{conv_id}/messages", headers=bearer(user_id))
    assert res.status_code == 200
    contents = [m["content"] for m in res.json()["items"]]
    assert contents == ["early question", "early answer", "later question", "later answer"]

    res = await api_client.put(
        f"/api/v1/conversations/{conv_id}",
        json={"title": "Renamed", "devotional_context": {"day_number": 3, "week_theme": "Hope"}},
        headers=bearer(user_id),
    )
    assert res.status_code == 200
    assert res.json()["title"] == "Renamed"
    assert res.json()["devotional_context"]["week_theme"] == "Hope"


@pytest.mark.anyio
async def test_preferences_roundtrip(api_client, db):
    user_id = add_user(db)

    res = await api_client.get("/api/v1/preferences", headers=bearer(user_id))
    assert res.status_code == 200
    assert res.json()["conversation_style"] == "balanced"
    assert res.json()["preferred_assistant_role"] is None

    res = await api_client.put(
        "/api/v1/preferences",
        json={"preferred_assistant_role": "Coach", "include_fitness_progress": True},
        headers=bearer(user_id),
    )
    assert res.status_code == 200
    body = res.json()
    assert body["preferred_assistant_role"] == "Coach"
    assert body["include_fitness_progress"] is True
    assert body["include_devotional_context"] is True

    bad = await api_client.put("/api/v1/preferences", json={"conversation_style": "chatty"}, headers=bearer(user_id))
    assert bad.status_code == 422


@pytest.mark.anyio
async def test_entitlement_endpoint(api_client, db):
    user_id = add_user(db)

    class StubEntitlements:
        async def has_active_entitlement(self, uid, entitlement_id):
            return uid == user_id and entitlement_id == "pro_user"

    app.dependency_overrides[get_entitlement_service] = lambda: StubEntitlements()
    try:
        res = await api_client.get("/api/v1/entitlements/pro_user", headers=bearer(user_id))
        assert res.json() == {"entitlement_id": "pro_user", "active": True}
        res = await api_client.get("/api/v1/entitlements/family_plan", headers=bearer(user_id))
        assert res.json() == {"entitlement_id": "family_plan", "active": False}
    finally:
        app.dependency_overrides.clear()
