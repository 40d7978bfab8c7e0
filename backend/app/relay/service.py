import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings
from ..core.exceptions import AssistantRunException, ConfigurationException, UpstreamLLMException, ValidationException
from ..db.base import SessionFactory
from ..models.assistant import UserRole
from ..models.conversation import MessageMetadata, RelayMode
from ..models.relay import SendMessageRequest
from ..models.sql_models import AIConversation as SQLConversation
from ..models.sql_models import User as SQLUser
from ..services.assistants import AssistantService
from ..services.context import build_prompt_context
from ..services.conversations import ConversationService, title_from_message
from ..services.preferences import PreferencesService
from .llm import LLMGateway
from .personas import (
    FallbackPersona,
    Persona,
    PromptContext,
    ResourceBackedPersona,
    build_system_prompt,
    persona_from_row,
)
from .polling import PollTimeout, poll_until

logger = logging.getLogger(__name__)


@dataclass
class RelayOutcome:
    reply: str
    role: UserRole
    mode: RelayMode
    conversation_id: Optional[str] = None


def check_configuration(settings: Settings) -> None:
    """Fail fast when a credential the relay needs is missing.

    The ``debug`` payload only carries booleans and names, never values.
    """
    debug = {
        "has_openai_key": bool(settings.OPENAI_API_KEY.strip()),
        "has_database_url": bool(settings.DATABASE_URL.strip()),
        "environment": settings.ENVIRONMENT,
    }
    if not debug["has_openai_key"]:
        logger.error("OpenAI API key is missing or empty")
        raise ConfigurationException(
            "Please set the OPENAI_API_KEY environment variable for the relay",
            error="OpenAI API key not configured",
            debug=debug,
        )
    if not debug["has_database_url"]:
        logger.error("Database configuration missing")
        raise ConfigurationException(
            "DATABASE_URL not found",
            error="Database configuration missing",
            debug=debug,
        )


class MessageRelay:
    """Turns "user said X to role Y" into a stored exchange and a reply.

    Holds no state between calls. Each call resolves the persona, finds or
    creates the conversation, asks the LLM, then writes both turns. Storage
    failures after the reply exists are logged and do not fail the call.
    """

    def __init__(
        self,
        settings: Settings,
        llm: LLMGateway,
        session_factory: Callable[[], Session] = SessionFactory,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.llm = llm
        self.session_factory = session_factory
        self.sleep = sleep

    async def relay(self, request: SendMessageRequest) -> RelayOutcome:
        received_at = datetime.now(timezone.utc)
        db = self.session_factory()
        try:
            user = self._load_user(db, request.user_id)
            role = self._resolve_role(db, request)
            persona = self._resolve_persona(db, role, user.org_id if user else None)
            logger.info(
                "Relaying message for user %s to %s (%s)",
                request.user_id, role.value, type(persona).__name__,
            )

            match persona:
                case ResourceBackedPersona():
                    return await self._assistant_path(db, request, user, persona, received_at)
                case FallbackPersona():
                    return await self._fallback_path(db, request, user, persona, received_at)
        finally:
            db.close()

    # -- resolution -------------------------------------------------------

    def _load_user(self, db: Session, user_id: str) -> Optional[SQLUser]:
        try:
            return db.query(SQLUser).filter(SQLUser.id == user_id).first()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Could not load user %s: %s", user_id, e)
            return None

    def _resolve_role(self, db: Session, request: SendMessageRequest) -> UserRole:
        if request.assistant_role:
            role = UserRole.parse(request.assistant_role)
            if role is None:
                raise ValidationException(
                    f"Unknown assistant role: {request.assistant_role}", error="Invalid assistant role"
                )
            return role
        try:
            preferred = PreferencesService(db).preferred_role(request.user_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Could not read preferred role for %s: %s", request.user_id, e)
            preferred = None
        return preferred or UserRole.parse(self.settings.DEFAULT_ASSISTANT_ROLE) or UserRole.COACH

    def _resolve_persona(self, db: Session, role: UserRole, org_id: Optional[str]) -> Persona:
        try:
            row = AssistantService(db).find_for_role(role, org_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Persona lookup for %s failed, answering in fallback mode: %s", role.value, e)
            row = None
        if row is None:
            logger.info("No active persona for %s; answering in fallback mode", role.value)
        return persona_from_row(role, row)

    def _reusable_conversation(
        self, conversations: ConversationService, request: SendMessageRequest, persona: Persona
    ) -> Optional[SQLConversation]:
        """The supplied conversation, if it is this user's and this persona's."""
        if not request.conversation_id:
            return None
        try:
            conversation = conversations.get_owned(
                request.conversation_id, request.user_id, persona.conversation_ref
            )
        except SQLAlchemyError as e:
            conversations.db.rollback()
            logger.warning("Conversation lookup %s failed: %s", request.conversation_id, e)
            return None
        if conversation is None:
            logger.info(
                "Conversation %s does not belong to user %s and %s; starting a new one",
                request.conversation_id, request.user_id, persona.conversation_ref,
            )
        return conversation

    def _create_conversation(
        self,
        conversations: ConversationService,
        request: SendMessageRequest,
        persona: Persona,
        thread_id: Optional[str] = None,
    ) -> Optional[str]:
        try:
            conversation = conversations.create(
                user_id=request.user_id,
                assistant_id=persona.conversation_ref,
                title=title_from_message(request.message),
                thread_id=thread_id,
            )
        except SQLAlchemyError as e:
            logger.error("Failed to create conversation for user %s: %s", request.user_id, e)
            return None
        return conversation.id

    # -- fallback path ----------------------------------------------------

    async def _fallback_path(
        self,
        db: Session,
        request: SendMessageRequest,
        user: Optional[SQLUser],
        persona: FallbackPersona,
        received_at: datetime,
    ) -> RelayOutcome:
        conversations = ConversationService(db)
        conversation = self._reusable_conversation(conversations, request, persona)
        conversation_id = conversation.id if conversation else None

        history: List[Dict[str, str]] = []
        if conversation_id:
            try:
                history = conversations.recent_turns(conversation_id, self.settings.FALLBACK_HISTORY_MESSAGES)
            except SQLAlchemyError as e:
                db.rollback()
                logger.warning("Could not load history for %s: %s", conversation_id, e)

        try:
            context = build_prompt_context(db, user, conversation)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Could not build prompt context for %s: %s", request.user_id, e)
            context = PromptContext()

        messages = [{"role": "system", "content": build_system_prompt(persona, context)}]
        messages.extend(history)
        messages.append({"role": "user", "content": request.message})

        reply = await self.llm.chat_completion(messages)
        logger.info("Fallback reply for %s in %dms", persona.role.value, reply.response_time_ms)

        if conversation_id is None:
            conversation_id = self._create_conversation(conversations, request, persona)

        metadata = MessageMetadata(
            token_usage=reply.usage,
            response_time_ms=reply.response_time_ms,
            model=reply.model,
            temperature=self.llm.temperature,
            mode=RelayMode.FALLBACK,
            fallback=True,
            assistant_id=persona.assistant_id,
        )
        self._persist(conversations, conversation_id, request.message, reply.text, received_at, metadata)
        return RelayOutcome(reply=reply.text, role=persona.role, mode=RelayMode.FALLBACK, conversation_id=conversation_id)

    # -- assistant resource path ------------------------------------------

    async def _assistant_path(
        self,
        db: Session,
        request: SendMessageRequest,
        user: Optional[SQLUser],
        persona: ResourceBackedPersona,
        received_at: datetime,
    ) -> RelayOutcome:
        conversations = ConversationService(db)
        conversation = self._reusable_conversation(conversations, request, persona)
        conversation_id = conversation.id if conversation else None
        thread_id = conversation.thread_id if conversation else None

        if not thread_id:
            thread_id = await self.llm.create_thread()
            logger.info("Created thread %s", thread_id)
            if conversation is not None:
                try:
                    conversations.attach_thread(conversation, thread_id)
                except SQLAlchemyError as e:
                    logger.error("Failed to attach thread %s to conversation %s: %s", thread_id, conversation_id, e)
            else:
                conversation_id = self._create_conversation(conversations, request, persona, thread_id=thread_id)

        await self.llm.post_user_message(thread_id, request.message)
        run = await self.llm.start_run(thread_id, persona.openai_assistant_id, persona.personality_prompt)
        logger.info("Started run %s on thread %s", run.id, thread_id)

        try:
            run = await poll_until(
                lambda: self.llm.get_run(thread_id, run.id),
                lambda r: r.status,
                interval_s=self.settings.RUN_POLL_INTERVAL_S,
                max_attempts=self.settings.RUN_POLL_MAX_ATTEMPTS,
                sleep=self.sleep,
                label=f"run {run.id}",
            )
        except PollTimeout as e:
            logger.error("Run %s did not finish after %d polls", run.id, e.attempts)
            raise AssistantRunException(
                f"Assistant run did not complete after {e.attempts} polls (last status: {e.last.status})"
            )

        if run.status != "completed":
            details = f"Assistant run failed with status: {run.status}"
            if run.last_error:
                details += f". Error: {run.last_error}"
            logger.error(details)
            raise AssistantRunException(details)

        reply = await self.llm.latest_assistant_message(thread_id)
        if reply is None:
            raise UpstreamLLMException("Assistant did not provide a response", error="No response")

        metadata = MessageMetadata(
            model=self.llm.model,
            mode=RelayMode.ASSISTANT,
            assistant_id=persona.assistant_id,
            thread_id=thread_id,
            run_id=run.id,
            openai_message_id=reply.message_id,
        )
        self._persist(conversations, conversation_id, request.message, reply.text, received_at, metadata)
        return RelayOutcome(reply=reply.text, role=persona.role, mode=RelayMode.ASSISTANT, conversation_id=conversation_id)

    # -- persistence ------------------------------------------------------

    def _persist(
        self,
        conversations: ConversationService,
        conversation_id: Optional[str],
        user_text: str,
        assistant_text: str,
        user_at: datetime,
        metadata: MessageMetadata,
    ) -> None:
        """Store both turns and bump last_message_at; failures are only logged."""
        if conversation_id is None:
            logger.error("Transcript not stored: no conversation could be established")
            return
        # The assistant turn must sort after the user turn even on a coarse clock
        assistant_at = max(datetime.now(timezone.utc), user_at + timedelta(microseconds=1))
        try:
            conversations.add_turns(
                conversation_id,
                user_text,
                assistant_text,
                user_at=user_at,
                assistant_at=assistant_at,
                metadata=metadata.to_json(),
            )
        except SQLAlchemyError as e:
            logger.error("Failed to store messages for conversation %s: %s", conversation_id, e)
        try:
            conversations.touch(conversation_id, assistant_at)
        except SQLAlchemyError as e:
            logger.error("Failed to update conversation timestamp for %s: %s", conversation_id, e)
