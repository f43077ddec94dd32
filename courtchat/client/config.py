from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client-side knobs. Token storage is left to the embedding app."""

    API_URL: str = "http://localhost:8000/api/v1"
    SOCKET_URL: str = "ws://localhost:8000/ws/chat"

    REQUEST_TIMEOUT: float = 10.0
    ACK_TIMEOUT: float = 5.0

    # Reconnection: delay doubles per attempt up to the max, for at most N attempts
    RECONNECT_ATTEMPTS: int = 10
    RECONNECT_DELAY: float = 1.0
    RECONNECT_DELAY_MAX: float = 30.0

    TYPING_IDLE_TIMEOUT: float = 2.0
    TYPING_TTL: float = 5.0
    PAGE_SIZE: int = 50

    model_config = SettingsConfigDict(
        env_prefix="COURTCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
