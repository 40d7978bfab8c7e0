import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..core.exceptions import (
    AppException,
    ForbiddenException,
    UnauthorizedException,
    ValidationException,
)
from ..core.logging_config import configure_logging, shutdown_logging
from ..core.security import subject_from_authorization
from ..db.base import SessionLocal, engine, init_db
from ..models.relay import SendMessageRequest, SendMessageResponse
from .llm import LLMGateway
from .service import MessageRelay, check_configuration

logger = logging.getLogger(__name__)

RELAY_PATH = "/functions/v1/ai-send-message"
RELAY_ALLOWED_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]
MISSING_FIELDS_ERROR = "Missing required fields: userId, message"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging("relay.log")
    init_db()
    try:
        yield
    finally:
        SessionLocal.remove()
        engine.dispose()
        shutdown_logging()


app = FastAPI(
    title="StrongBond Message Relay",
    description="Relays a user's message to an AI persona and stores the exchange",
    version="0.1.0",
    lifespan=lifespan,
)

# Browser clients call the relay from any origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=RELAY_ALLOWED_HEADERS,
)


def build_llm_gateway(settings: Settings) -> LLMGateway:
    return LLMGateway.from_settings(settings)


def build_relay(settings: Settings) -> MessageRelay:
    return MessageRelay(settings, build_llm_gateway(settings))


async def _parse_request(request: Request) -> SendMessageRequest:
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationException("Request body must be a JSON object", error="Invalid JSON body")
    if not isinstance(payload, dict):
        raise ValidationException(error=MISSING_FIELDS_ERROR)
    try:
        body = SendMessageRequest.model_validate(payload)
    except ValidationError as e:
        raise ValidationException(str(e), error="Invalid request body")
    if body.missing_required():
        raise ValidationException(error=MISSING_FIELDS_ERROR)
    return body


def _authorize(request: Request, body: SendMessageRequest, settings: Settings) -> None:
    """The bearer token's subject is the only identity the relay trusts."""
    if not settings.RELAY_REQUIRE_AUTH:
        return
    subject = subject_from_authorization(request.headers.get("authorization"))
    if subject is None:
        raise UnauthorizedException("A valid bearer token is required")
    if subject != body.user_id:
        logger.warning("Relay call for user %s made with a token for %s", body.user_id, subject)
        raise ForbiddenException("userId does not match the authenticated user", error="Access denied")


@app.options(RELAY_PATH)
async def preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK)


@app.post(RELAY_PATH)
async def send_message(request: Request) -> JSONResponse:
    logger.info("=== AI SEND MESSAGE START ===")
    try:
        body = await _parse_request(request)
        settings = get_settings()
        check_configuration(settings)
        _authorize(request, body, settings)

        relay = build_relay(settings)
        try:
            outcome = await relay.relay(body)
        finally:
            await relay.llm.close()

        response = SendMessageResponse(
            message=outcome.reply,
            conversation_id=outcome.conversation_id,
            assistant_role=outcome.role.value,
            mode=outcome.mode,
        )
        logger.info("=== AI SEND MESSAGE SUCCESS ===")
        return JSONResponse(status_code=status.HTTP_200_OK, content=response.to_wire())
    except AppException as e:
        logger.error("Relay call failed (%s): %s", e.status_code, e.error)
        return JSONResponse(status_code=e.status_code, content=e.to_body())
    except Exception as e:
        logger.error("Unhandled relay error: %s", e, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "details": str(e) or e.__class__.__name__},
        )
