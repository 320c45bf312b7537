from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Google Drive
    GOOGLE_SERVICE_ACCOUNT_PATH: str = "/data/service-account.json"
    GOOGLE_SCOPES: str = "https://www.googleapis.com/auth/drive.readonly"
    GOOGLE_FOLDER_ID: Optional[str] = None
    GOOGLE_DRIVE_API_URL: str = "https://www.googleapis.com/drive/v3"

    # Mirror
    DOWNLOAD_PATH: str = "/data/media"
    SYNC_INTERVAL_SECONDS: int = 300
    SYNC_MAX_RETRIES: int = 3
    SYNC_RETRY_BACKOFF_SECONDS: float = 1.0
    ALLOWED_EXTENSIONS: str = "jpg,jpeg,png,gif,webp,bmp,mp4,webm,mov,m4v"

    # Persistence
    STATE_PATH: str = "/data/state.json"
    PERSIST_ENABLED: bool = True

    # Live update channel
    SERVER_BASE_URL: str = "http://localhost:3000"
    WS_PATH: str = "/ws"
    WS_MAX_RECONNECT_ATTEMPTS: int = 5
    WS_RECONNECT_INTERVAL_SECONDS: float = 5.0
    WS_PING_INTERVAL_SECONDS: float = 30.0
    SERVER_HEALTH_PATH: str = "/api/health"
    SERVER_STATUS_POLL_SECONDS: float = 10.0

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_ENABLED: bool = False
    HTTP_SERVER_PORT: int = 8080
    HTTP_SERVER_TOKEN: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
