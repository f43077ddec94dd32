from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7
    APP_NAME: str = "Courtchat API"
    CORS_ORIGINS: str = "http://localhost:8081,http://localhost:19006"
    LOG_LEVEL: str = "INFO"

    # Messaging limits
    MESSAGE_MAX_LENGTH: int = 5000  # matches the client's input cap
    MESSAGES_PAGE_DEFAULT: int = 50
    MESSAGES_PAGE_MAX: int = 100

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
