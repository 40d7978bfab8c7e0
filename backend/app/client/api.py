import asyncio
import logging
from typing import Any, Awaitable, List, Optional, TypeVar

import httpx

from ..models.assistant import Assistant
from ..models.conversation import Conversation, Message
from ..models.relay import SendMessageResponse
from ..models.user import Token, User, UserCreate
from .settings import ClientSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ClientError(Exception):
    """A call to the API or the relay did not produce a usable answer."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ClientTimeoutError(ClientError):
    pass


async def with_timeout(awaitable: Awaitable[T], seconds: float, what: str) -> T:
    """Race ``awaitable`` against a deadline; the loser is cancelled."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        logger.warning("%s timed out after %ss", what, seconds)
        raise ClientTimeoutError(f"{what} timed out after {seconds:g}s")


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error") or body.get("detail")
        if error:
            return error if isinstance(error, str) else str(error)
    return f"HTTP {response.status_code}"


class ApiClient:
    """HTTP access to the companion API and the message relay."""

    def __init__(self, settings: ClientSettings, http: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http = http or httpx.AsyncClient(base_url=settings.API_BASE_URL, timeout=settings.SEND_TIMEOUT_S)
        self.access_token: Optional[str] = None

    def _headers(self) -> dict:
        headers = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _request(self, method: str, url: str, what: str, **kwargs) -> Any:
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            response = await self.http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ClientError(f"{what} failed: {e.__class__.__name__}: {e}") from e
        if response.status_code >= 400:
            raise ClientError(_error_text(response), status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise ClientError(f"{what} returned a non-JSON body", status_code=response.status_code) from e

    # Auth

    async def register(self, user: UserCreate) -> User:
        data = await self._request("POST", "/api/v1/auth/register", "Sign up", json=user.model_dump(exclude_none=True))
        return User.model_validate(data)

    async def login(self, email: str, password: str) -> Token:
        data = await self._request(
            "POST", "/api/v1/auth/login", "Sign in", data={"username": email, "password": password}
        )
        return Token.model_validate(data)

    async def refresh(self, refresh_token: str) -> Token:
        data = await self._request("POST", "/api/v1/auth/refresh", "Token refresh", json={"refresh_token": refresh_token})
        return Token.model_validate(data)

    async def me(self) -> User:
        return User.model_validate(await self._request("GET", "/api/v1/auth/me", "Loading profile"))

    # Companion API

    async def list_assistants(self) -> List[Assistant]:
        data = await self._request("GET", "/api/v1/assistants", "Loading assistants")
        return [Assistant.model_validate(a) for a in data]

    async def list_conversations(self, assistant_id: Optional[str] = None, limit: int = 10, skip: int = 0) -> List[Conversation]:
        params = {"limit": limit, "skip": skip}
        if assistant_id:
            params["assistant_id"] = assistant_id
        data = await self._request("GET", "/api/v1/conversations", "Loading conversations", params=params)
        return [Conversation.model_validate(c) for c in data["items"]]

    async def get_conversation(self, conversation_id: str) -> Conversation:
        data = await self._request("GET", f"/api/v1/conversations/{conversation_id}", "Loading conversation")
        return Conversation.model_validate(data)

    async def get_messages(self, conversation_id: str, limit: int = 1000) -> List[Message]:
        data = await self._request(
            "GET", f"/api/v1/conversations/{conversation_id}/messages", "Loading messages", params={"limit": limit}
        )
        return [Message.model_validate(m) for m in data["items"]]

    # Relay

    async def send_to_relay(
        self,
        user_id: str,
        message: str,
        assistant_role: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> SendMessageResponse:
        payload = {"userId": user_id, "message": message}
        if assistant_role:
            payload["assistantRole"] = assistant_role
        if conversation_id:
            payload["conversationId"] = conversation_id
        headers = {"apikey": self.settings.ANON_KEY} if self.settings.ANON_KEY else {}
        data = await self._request("POST", self.settings.RELAY_URL, "Sending message", json=payload, headers=headers)
        if not data.get("success"):
            raise ClientError(data.get("error") or "Unknown error")
        return SendMessageResponse.model_validate(data)

    async def aclose(self) -> None:
        await self.http.aclose()
