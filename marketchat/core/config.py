from typing import List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "marketchat-api"
    VERSION: str = "0.1.0"
    ENV: str = "development"
    PORT: int = 8000

    # Supabase project (acepta el nombre corto usado en los .env del front)
    SUPABASE_URL: str = Field(default="http://localhost:54321")
    SUPABASE_ANON_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("SUPABASE_ANON_KEY", "SUPABASE_KEY"),
    )
    HTTP_TIMEOUT: float = 20.0

    # Storage
    CHAT_IMAGES_BUCKET: str = "chat-images"
    MAX_IMAGE_BYTES: int = 5 * 1024 * 1024

    # Database webhook (realtime feed)
    WEBHOOK_SECRET: str = ""

    # Presentation
    DISPLAY_TIMEZONE: str = "UTC"
    CONVERSATION_SORT: str = "display"  # "display" | "chronological"
    PHOTO_PLACEHOLDER: str = "Photo"
    NO_MESSAGES_PLACEHOLDER: str = "No messages"
    NEW_CONVERSATION_PLACEHOLDER: str = "New conversation"
    UNKNOWN_USER_NAME: str = "User"
    DEFAULT_AVATAR_URL: str = "https://i.pravatar.cc/150?u={user_id}"

    PENDING_ACTION_TTL_SECONDS: int = 900
    # Vistas sin peticiones durante este tiempo se desmontan
    VIEW_IDLE_TTL_SECONDS: int = 1800

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Logging
    LOG_DIR: str = "logs"
    LOG_FILE: str = "marketchat.log"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
