import httpx
import pytest

from backend.app.client.api import ApiClient, ClientError
from backend.app.client.auth import (
    AuthClient,
    AuthEvent,
    AuthSession,
    AuthState,
    AuthStateMachine,
    InvalidAuthTransition,
)
from backend.app.client.settings import ClientSettings
from backend.app.models.user import User

USER = {"id": "user-1", "email": "sam@example.com", "first_name": "Sam", "created_at": "2026-01-01T00:00:00+00:00"}


def _session():
    return AuthSession(user=User(id="user-1", email="sam@example.com"), access_token="tok")


def test_sign_in_flow():
    machine = AuthStateMachine()
    assert machine.state == AuthState.UNAUTHENTICATED
    assert machine.transition(AuthEvent.SIGN_IN_STARTED) == AuthState.AUTHENTICATING
    assert machine.user_id is None
    assert machine.transition(AuthEvent.SIGN_IN_SUCCEEDED, session=_session()) == AuthState.AUTHENTICATED
    assert machine.user_id == "user-1"
    assert machine.transition(AuthEvent.SIGNED_OUT) == AuthState.UNAUTHENTICATED
    assert machine.session is None


def test_failure_then_clear():
    machine = AuthStateMachine()
    machine.transition(AuthEvent.SIGN_IN_STARTED)
    machine.transition(AuthEvent.SIGN_IN_FAILED, error="Incorrect email or password")
    assert machine.state == AuthState.ERROR
    assert machine.error == "Incorrect email or password"
    machine.transition(AuthEvent.ERROR_CLEARED)
    assert machine.state == AuthState.UNAUTHENTICATED
    assert machine.error is None


@pytest.mark.parametrize(
    "setup, event",
    [
        ([], AuthEvent.SIGN_IN_SUCCEEDED),
        ([], AuthEvent.SIGN_IN_FAILED),
        ([], AuthEvent.ERROR_CLEARED),
        ([AuthEvent.SIGN_IN_STARTED], AuthEvent.SIGN_IN_STARTED),
        ([AuthEvent.SIGN_IN_STARTED], AuthEvent.SESSION_RESTORED),
    ],
)
def test_invalid_transitions_raise(setup, event):
    machine = AuthStateMachine()
    for e in setup:
        machine.transition(e)
    before = machine.state
    with pytest.raises(InvalidAuthTransition):
        machine.transition(event, session=_session())
    assert machine.state == before


def test_success_requires_session():
    machine = AuthStateMachine()
    machine.transition(AuthEvent.SIGN_IN_STARTED)
    with pytest.raises(InvalidAuthTransition):
        machine.transition(AuthEvent.SIGN_IN_SUCCEEDED)
    assert machine.state == AuthState.AUTHENTICATING


class FakeAuthApi:
    def __init__(self):
        self.valid_access = {"fresh-access"}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/v1/auth/login":
            form = dict(pair.split("=") for pair in request.content.decode().split("&"))
            if form.get("password") != "Passw0rdOK":
                return httpx.Response(401, json={"detail": "Incorrect email or password"})
            return httpx.Response(200, json=self._tokens())
        if path == "/api/v1/auth/refresh":
            return httpx.Response(200, json=self._tokens())
        if path == "/api/v1/auth/register":
            return httpx.Response(201, json=USER)
        if path == "/api/v1/auth/me":
            token = request.headers.get("authorization", "").removeprefix("Bearer ")
            if token not in self.valid_access:
                return httpx.Response(401, json={"detail": "Could not validate credentials"})
            return httpx.Response(200, json=USER)
        return httpx.Response(404, json={"detail": "Not Found"})

    def _tokens(self):
        return {
            "access_token": "fresh-access",
            "refresh_token": "fresh-refresh",
            "token_type": "bearer",
            "expires_in": 3600,
            "user_id": "user-1",
        }


@pytest.fixture
async def auth_client():
    settings = ClientSettings(API_BASE_URL="http://api.test")
    http = httpx.AsyncClient(base_url=settings.API_BASE_URL, transport=httpx.MockTransport(FakeAuthApi()))
    api = ApiClient(settings, http=http)
    yield AuthClient(api)
    await api.aclose()


@pytest.mark.anyio
async def test_sign_in_success(auth_client):
    session = await auth_client.sign_in("sam@example.com", "Passw0rdOK")
    assert session.user.id == "user-1"
    assert auth_client.machine.is_authenticated
    assert auth_client.api.access_token == "fresh-access"

    auth_client.sign_out()
    assert auth_client.machine.state == AuthState.UNAUTHENTICATED
    assert auth_client.api.access_token is None


@pytest.mark.anyio
async def test_sign_in_failure_moves_to_error(auth_client):
    with pytest.raises(ClientError):
        await auth_client.sign_in("sam@example.com", "wrong")
    assert auth_client.machine.state == AuthState.ERROR
    assert auth_client.machine.error == "Incorrect email or password"

    # A retry from the error state is allowed
    await auth_client.sign_in("sam@example.com", "Passw0rdOK")
    assert auth_client.machine.is_authenticated


@pytest.mark.anyio
async def test_sign_up_signs_in(auth_client):
    await auth_client.sign_up("sam@example.com", "Passw0rdOK", first_name="Sam")
    assert auth_client.machine.user_id == "user-1"


@pytest.mark.anyio
async def test_restore_refreshes_stale_token(auth_client):
    assert await auth_client.restore("stale-access", refresh_token="old-refresh") is True
    assert auth_client.machine.session.access_token == "fresh-access"
    assert auth_client.machine.session.refresh_token == "fresh-refresh"


@pytest.mark.anyio
async def test_restore_without_refresh_token_fails_quietly(auth_client):
    assert await auth_client.restore("stale-access") is False
    assert auth_client.machine.state == AuthState.UNAUTHENTICATED
    assert auth_client.api.access_token is None
