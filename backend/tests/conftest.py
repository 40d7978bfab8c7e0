import os
import sys
from pathlib import Path

# Test environment must be in place before the app modules read it
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OPENAI_API_KEY"] = "sk-test-key"
os.environ["SECRET_KEY"] = "test-secret-key"

# Ensure repository root is on sys.path so 'import backend' works
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from backend.app.config import Settings  # noqa: E402
from backend.app.core.security import create_access_token, get_password_hash  # noqa: E402
from backend.app.db.base import SessionLocal, drop_db, init_db  # noqa: E402
from backend.app.models.conversation import TokenUsage  # noqa: E402
from backend.app.models.sql_models import AIAssistant, Organization, User  # noqa: E402
from backend.app.relay.llm import ChatReply, RunState, ThreadReply  # noqa: E402

PASSWORD = "Passw0rdOK"


# Force pytest-anyio to use asyncio backend (avoid requiring 'trio')
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def database():
    init_db()
    try:
        yield
    finally:
        SessionLocal.remove()
        drop_db()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def add_org(db, name: str = "Grace Chapel") -> str:
    org = Organization(name=name)
    db.add(org)
    db.commit()
    return org.id


def add_user(db, email: str = "sam@example.com", first_name: str = "Sam", org_id=None, role="Dad") -> str:
    user = User(
        email=email,
        hashed_password=get_password_hash(PASSWORD),
        first_name=first_name,
        user_role=role,
        org_id=org_id,
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user.id


def add_assistant(db, role: str, org_id=None, openai_assistant_id=None, name=None, is_active=True) -> str:
    row = AIAssistant(
        org_id=org_id,
        user_role=role,
        name=name or f"{role} Assistant",
        description=f"{role} companion",
        personality_prompt=f"You are the {role} persona.",
        openai_assistant_id=openai_assistant_id,
        is_active=is_active,
    )
    db.add(row)
    db.commit()
    return row.id


def bearer(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


class FakeLLM:
    """Deterministic stand-in for LLMGateway."""

    model = "fake-model"
    temperature = 0.7

    def __init__(self):
        self.reply = "Keep going, you are not alone."
        self.chat_error = None
        self.chat_calls = []
        self.threads_created = 0
        self.posted = []
        self.runs_started = []
        self.run_statuses = ["queued", "in_progress", "completed"]
        self.run_error = None
        self.get_run_calls = 0
        self.assistant_text = "Here is a word from the thread."
        self.closed = False

    async def chat_completion(self, messages):
        self.chat_calls.append(messages)
        if self.chat_error is not None:
            raise self.chat_error
        return ChatReply(
            text=self.reply,
            model=self.model,
            usage=TokenUsage(prompt_tokens=12, completion_tokens=8, total_tokens=20),
            response_time_ms=5,
        )

    async def create_thread(self):
        self.threads_created += 1
        return f"thread_{self.threads_created}"

    async def post_user_message(self, thread_id, content):
        self.posted.append((thread_id, content))

    async def start_run(self, thread_id, assistant_id, instructions=None):
        self.runs_started.append((thread_id, assistant_id, instructions))
        return RunState(id=f"run_{len(self.runs_started)}", status="queued")

    async def get_run(self, thread_id, run_id):
        status = self.run_statuses[min(self.get_run_calls, len(self.run_statuses) - 1)]
        self.get_run_calls += 1
        return RunState(id=run_id, status=status, last_error=self.run_error)

    async def latest_assistant_message(self, thread_id):
        if self.assistant_text is None:
            return None
        return ThreadReply(message_id="msg_1", text=self.assistant_text)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def relay_settings():
    return Settings(
        OPENAI_API_KEY="sk-test-key",
        DATABASE_URL="sqlite://",
        RUN_POLL_INTERVAL_S=0.0,
        RUN_POLL_MAX_ATTEMPTS=5,
    )


@pytest.fixture()
async def relay_client(monkeypatch, fake_llm, relay_settings):
    from backend.app.relay.app import app as relay_app

    monkeypatch.setattr("backend.app.relay.app.get_settings", lambda: relay_settings)
    monkeypatch.setattr("backend.app.relay.app.build_llm_gateway", lambda settings: fake_llm)

    transport = ASGITransport(app=relay_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture()
async def api_client():
    from backend.app.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
