import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from ..config import Settings
from ..core.exceptions import UpstreamLLMException
from ..models.conversation import TokenUsage

logger = logging.getLogger(__name__)

EMPTY_REPLY = "I apologize, but I encountered an issue generating a response."


@dataclass
class ChatReply:
    text: str
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None
    response_time_ms: int = 0


@dataclass
class RunState:
    id: str
    status: str
    last_error: Optional[str] = None


@dataclass
class ThreadReply:
    message_id: str
    text: str


class LLMGateway:
    """Thin async wrapper over the OpenAI chat completion and assistants APIs.

    The relay only talks to this class, so tests replace it with a fake.
    Every OpenAI error is re-raised as ``UpstreamLLMException``.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        max_tokens: int = 500,
        presence_penalty: float = 0.1,
        frequency_penalty: float = 0.1,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.presence_penalty = presence_penalty
        self.frequency_penalty = frequency_penalty
        self.client = client or AsyncOpenAI(api_key=api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMGateway":
        return cls(
            api_key=settings.OPENAI_API_KEY.strip(),
            model=settings.MODEL_NAME,
            temperature=settings.TEMPERATURE,
            max_tokens=settings.MAX_TOKENS,
            presence_penalty=settings.PRESENCE_PENALTY,
            frequency_penalty=settings.FREQUENCY_PENALTY,
        )

    async def chat_completion(self, messages: List[Dict[str, str]]) -> ChatReply:
        started = time.monotonic()
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                presence_penalty=self.presence_penalty,
                frequency_penalty=self.frequency_penalty,
            )
        except openai.OpenAIError as e:
            raise map_openai_error(e) from e

        text = ""
        if completion.choices:
            text = (completion.choices[0].message.content or "").strip()
        usage = None
        if completion.usage is not None:
            usage = TokenUsage(
                prompt_tokens=completion.usage.prompt_tokens or 0,
                completion_tokens=completion.usage.completion_tokens or 0,
                total_tokens=completion.usage.total_tokens or 0,
            )
        return ChatReply(
            text=text or EMPTY_REPLY,
            model=completion.model,
            usage=usage,
            response_time_ms=int((time.monotonic() - started) * 1000),
        )

    async def create_thread(self) -> str:
        try:
            thread = await self.client.beta.threads.create()
        except openai.OpenAIError as e:
            raise map_openai_error(e) from e
        return thread.id

    async def post_user_message(self, thread_id: str, content: str) -> None:
        try:
            await self.client.beta.threads.messages.create(thread_id=thread_id, role="user", content=content)
        except openai.OpenAIError as e:
            raise map_openai_error(e) from e

    async def start_run(self, thread_id: str, assistant_id: str, instructions: Optional[str] = None) -> RunState:
        kwargs = {"thread_id": thread_id, "assistant_id": assistant_id}
        if instructions:
            kwargs["instructions"] = instructions
        try:
            run = await self.client.beta.threads.runs.create(**kwargs)
        except openai.OpenAIError as e:
            raise map_openai_error(e) from e
        return _run_state(run)

    async def get_run(self, thread_id: str, run_id: str) -> RunState:
        try:
            run = await self.client.beta.threads.runs.retrieve(run_id, thread_id=thread_id)
        except openai.OpenAIError as e:
            raise map_openai_error(e) from e
        return _run_state(run)

    async def latest_assistant_message(self, thread_id: str) -> Optional[ThreadReply]:
        """The newest message on the thread if the assistant wrote it."""
        try:
            page = await self.client.beta.threads.messages.list(thread_id=thread_id, order="desc", limit=1)
        except openai.OpenAIError as e:
            raise map_openai_error(e) from e
        if not page.data:
            return None
        message = page.data[0]
        if message.role != "assistant":
            return None
        text = EMPTY_REPLY
        for block in message.content or []:
            if getattr(block, "type", None) == "text":
                text = block.text.value
                break
        return ThreadReply(message_id=message.id, text=text)

    async def close(self) -> None:
        await self.client.close()


def _run_state(run) -> RunState:
    last_error = getattr(run, "last_error", None)
    return RunState(
        id=run.id,
        status=run.status,
        last_error=getattr(last_error, "message", None) if last_error else None,
    )


def map_openai_error(exc: openai.OpenAIError) -> UpstreamLLMException:
    """Translate an OpenAI SDK error into the relay's ``{error, details}`` shape."""
    if isinstance(exc, openai.AuthenticationError):
        return UpstreamLLMException(
            "Invalid or expired OpenAI API key", error="OpenAI authentication failed"
        )
    if isinstance(exc, openai.RateLimitError):
        if getattr(exc, "code", None) == "insufficient_quota":
            return UpstreamLLMException(
                "OpenAI API quota exceeded. Please check your billing.", error="OpenAI quota exceeded"
            )
        return UpstreamLLMException(
            "OpenAI API rate limit exceeded. Please try again later.", error="Rate limit exceeded"
        )
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return UpstreamLLMException(str(exc) or "Could not reach OpenAI", error="OpenAI unavailable")
    logger.error("OpenAI call failed: %s", exc)
    return UpstreamLLMException(str(exc) or exc.__class__.__name__, error="OpenAI request failed")
