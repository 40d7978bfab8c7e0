from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    # Endpoints
    API_BASE_URL: str = "http://localhost:8000"
    RELAY_URL: str = "http://localhost:8001/functions/v1/ai-send-message"
    # Sent as the apikey header; the bearer token is the signed-in user's
    ANON_KEY: str = ""

    # Timeouts (seconds)
    SEND_TIMEOUT_S: float = 30.0
    CONNECTION_TEST_TIMEOUT_S: float = 10.0
    CONVERSATION_LIST_TIMEOUT_S: float = 15.0
    MESSAGES_TIMEOUT_S: float = 5.0
    ASSISTANTS_TIMEOUT_S: float = 8.0

    # Conversations shown in the history picker
    HISTORY_LIMIT: int = 10

    model_config = SettingsConfigDict(
        env_prefix="STRONGBOND_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

