"""
Core configuration for the Media Upload Orchestrator.
Manages environment variables, AWS settings and platform endpoints.
"""
import logging
import os
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    # AWS Configuration
    aws_region: str = os.getenv("AWS_REGION", "us-east-1")
    upload_sessions_table_name: str = os.getenv("UPLOAD_SESSIONS_TABLE_NAME", "")
    platform_tokens_table_name: str = os.getenv("PLATFORM_TOKENS_TABLE_NAME", "")
    staging_bucket_name: str = os.getenv("STAGING_BUCKET_NAME", "")
    staging_url_expiration_seconds: int = int(os.getenv("STAGING_URL_EXPIRATION_SECONDS", "3600"))

    # Session store backend: "dynamodb" or "memory"
    session_store_backend: str = os.getenv("SESSION_STORE_BACKEND", "dynamodb")

    # API Configuration
    api_title: str = os.getenv("API_TITLE", "Media Upload Orchestrator")
    api_version: str = os.getenv("API_VERSION", "1.0.0")

    # Upload Limits
    chunk_size_bytes: int = int(os.getenv("CHUNK_SIZE_BYTES", str(256 * 1024 * 1024)))
    max_file_size_bytes: int = int(os.getenv("MAX_FILE_SIZE_BYTES", str(2 * 1024 * 1024 * 1024)))

    # Retry Configuration
    retry_max_attempts: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    retry_base_delay_seconds: float = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "0.5"))

    # Stale Session Cleanup
    stale_session_timeout_minutes: int = int(os.getenv("STALE_SESSION_TIMEOUT_MINUTES", "30"))
    reaper_interval_seconds: int = int(os.getenv("REAPER_INTERVAL_SECONDS", "300"))
    session_ttl_slack_minutes: int = int(os.getenv("SESSION_TTL_SLACK_MINUTES", "30"))

    # Platform Endpoints
    http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "120"))
    youtube_upload_url: str = os.getenv(
        "YOUTUBE_UPLOAD_URL",
        "https://www.googleapis.com/upload/youtube/v3/videos?uploadType=resumable&part=snippet,status"
    )
    x_media_upload_url: str = os.getenv("X_MEDIA_UPLOAD_URL", "https://upload.twitter.com/1.1/media/upload.json")
    tiktok_upload_init_url: str = os.getenv("TIKTOK_UPLOAD_INIT_URL", "https://open-api.tiktok.com/video/upload/init/")
    graph_api_base_url: str = os.getenv("GRAPH_API_BASE_URL", "https://graph.facebook.com/v18.0")
    instagram_business_account_id: str = os.getenv("INSTAGRAM_BUSINESS_ACCOUNT_ID", "")

    # Authentication
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def jwt_secret(self) -> str:
        """JWT secret: JWT_SECRET if set, otherwise Parameter Store."""
        explicit = os.getenv("JWT_SECRET")
        if explicit:
            return explicit

        from src.core.parameter_store import ParameterNotAvailable, get_parameter
        try:
            return get_parameter(f"/media-upload-orchestrator/{self.environment}/jwt-secret", self.aws_region)
        except ParameterNotAvailable as e:
            # Local development without SSM access
            logger.warning("Using fallback JWT secret. %s", e.message)
            return "dev-secret-change-in-production"

    @property
    def stale_session_timeout_seconds(self) -> int:
        return self.stale_session_timeout_minutes * 60

    @property
    def session_ttl_seconds(self) -> int:
        """Record TTL: the stale timeout plus slack so the reaper always sees a record first."""
        return (self.stale_session_timeout_minutes + self.session_ttl_slack_minutes) * 60

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "dev")

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
