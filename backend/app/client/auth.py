import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from ..models.user import User, UserCreate
from .api import ApiClient, ClientError

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


class AuthEvent(str, Enum):
    SIGN_IN_STARTED = "sign_in_started"
    SIGN_IN_SUCCEEDED = "sign_in_succeeded"
    SIGN_IN_FAILED = "sign_in_failed"
    SIGNED_OUT = "signed_out"
    SESSION_RESTORED = "session_restored"
    ERROR_CLEARED = "error_cleared"


# current state -> event -> next state
AUTH_TRANSITIONS: Dict[AuthState, Dict[AuthEvent, AuthState]] = {
    AuthState.UNAUTHENTICATED: {
        AuthEvent.SIGN_IN_STARTED: AuthState.AUTHENTICATING,
        AuthEvent.SESSION_RESTORED: AuthState.AUTHENTICATED,
        AuthEvent.SIGNED_OUT: AuthState.UNAUTHENTICATED,
    },
    AuthState.AUTHENTICATING: {
        AuthEvent.SIGN_IN_SUCCEEDED: AuthState.AUTHENTICATED,
        AuthEvent.SIGN_IN_FAILED: AuthState.ERROR,
        AuthEvent.SIGNED_OUT: AuthState.UNAUTHENTICATED,
    },
    AuthState.AUTHENTICATED: {
        AuthEvent.SIGNED_OUT: AuthState.UNAUTHENTICATED,
        AuthEvent.SESSION_RESTORED: AuthState.AUTHENTICATED,
    },
    AuthState.ERROR: {
        AuthEvent.ERROR_CLEARED: AuthState.UNAUTHENTICATED,
        AuthEvent.SIGN_IN_STARTED: AuthState.AUTHENTICATING,
        AuthEvent.SIGNED_OUT: AuthState.UNAUTHENTICATED,
    },
}


class InvalidAuthTransition(Exception):
    pass


@dataclass
class AuthSession:
    user: User
    access_token: str
    refresh_token: Optional[str] = None


class AuthStateMachine:
    """Client authentication state; every change goes through ``transition``."""

    def __init__(self):
        self.state = AuthState.UNAUTHENTICATED
        self.session: Optional[AuthSession] = None
        self.error: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state == AuthState.AUTHENTICATED

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user.id if self.is_authenticated and self.session else None

    def transition(
        self,
        event: AuthEvent,
        *,
        session: Optional[AuthSession] = None,
        error: Optional[str] = None,
    ) -> AuthState:
        allowed = AUTH_TRANSITIONS[self.state]
        if event not in allowed:
            raise InvalidAuthTransition(
                f"Cannot apply '{event.value}' in state '{self.state.value}'. "
                f"Allowed: {[e.value for e in allowed]}"
            )
        if event in (AuthEvent.SIGN_IN_SUCCEEDED, AuthEvent.SESSION_RESTORED) and session is None:
            raise InvalidAuthTransition(f"'{event.value}' requires a session")

        previous = self.state
        self.state = allowed[event]
        if self.state == AuthState.AUTHENTICATED:
            self.session = session
            self.error = None
        elif self.state == AuthState.ERROR:
            self.session = None
            self.error = error or "Sign in failed"
        elif self.state == AuthState.UNAUTHENTICATED:
            self.session = None
            self.error = None
        logger.debug("Auth %s -> %s on %s", previous.value, self.state.value, event.value)
        return self.state


class AuthClient:
    """Drives an ``AuthStateMachine`` against the companion API auth endpoints."""

    def __init__(self, api: ApiClient, machine: Optional[AuthStateMachine] = None):
        self.api = api
        self.machine = machine or AuthStateMachine()

    async def _open_session(self, access_token: str, refresh_token: Optional[str]) -> AuthSession:
        self.api.access_token = access_token
        user = await self.api.me()
        return AuthSession(user=user, access_token=access_token, refresh_token=refresh_token)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        self.machine.transition(AuthEvent.SIGN_IN_STARTED)
        try:
            token = await self.api.login(email, password)
            session = await self._open_session(token.access_token, token.refresh_token)
        except ClientError as e:
            self.api.access_token = None
            self.machine.transition(AuthEvent.SIGN_IN_FAILED, error=str(e))
            raise
        self.machine.transition(AuthEvent.SIGN_IN_SUCCEEDED, session=session)
        logger.info("Signed in as %s", session.user.id)
        return session

    async def sign_up(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        user_role: Optional[str] = None,
        org_id: Optional[str] = None,
    ) -> AuthSession:
        # Invalid input raises ValidationError before any state change
        new_user = UserCreate(email=email, password=password, first_name=first_name, user_role=user_role, org_id=org_id)
        self.machine.transition(AuthEvent.SIGN_IN_STARTED)
        try:
            await self.api.register(new_user)
            token = await self.api.login(email, password)
            session = await self._open_session(token.access_token, token.refresh_token)
        except ClientError as e:
            self.api.access_token = None
            self.machine.transition(AuthEvent.SIGN_IN_FAILED, error=str(e))
            raise
        self.machine.transition(AuthEvent.SIGN_IN_SUCCEEDED, session=session)
        return session

    async def restore(self, access_token: str, refresh_token: Optional[str] = None) -> bool:
        """Resume a stored session, refreshing it once if the access token is stale."""
        try:
            session = await self._open_session(access_token, refresh_token)
        except ClientError as e:
            if not refresh_token or e.status_code != 401:
                self.api.access_token = None
                logger.info("Stored session could not be restored: %s", e)
                return False
            try:
                token = await self.api.refresh(refresh_token)
                session = await self._open_session(token.access_token, token.refresh_token)
            except ClientError as e2:
                self.api.access_token = None
                logger.info("Stored session could not be refreshed: %s", e2)
                return False
        self.machine.transition(AuthEvent.SESSION_RESTORED, session=session)
        return True

    def sign_out(self) -> None:
        self.api.access_token = None
        self.machine.transition(AuthEvent.SIGNED_OUT)

    def clear_error(self) -> None:
        self.machine.transition(AuthEvent.ERROR_CLEARED)
