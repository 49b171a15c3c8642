"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. When analyzing CSV data, provide clear "
    "insights, statistics, and visualizations descriptions. When analyzing "
    "images, describe what you see in detail. Always be concise and helpful."
)


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    gateway_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_API_KEY", "gateway_api_key"),
    )
    gateway_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://openrouter.ai/api/v1"),
        validation_alias=AliasChoices("GATEWAY_BASE_URL", "gateway_base_url"),
    )
    gateway_app_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices(
            "GATEWAY_APP_URL",
            "HTTP_REFERER",
            "gateway_app_url",
        ),
    )
    gateway_app_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_APP_TITLE", "gateway_app_name"),
    )
    default_model: str = Field(
        default="google/gemini-2.5-flash",
        validation_alias=AliasChoices("GATEWAY_MODEL", "default_model"),
    )
    system_prompt: Optional[str] = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        validation_alias=AliasChoices("GATEWAY_SYSTEM_PROMPT", "system_prompt"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("GATEWAY_TIMEOUT", "request_timeout"),
        ge=1,
    )
    conversation_log_dir: Path = Field(
        default_factory=lambda: Path("logs/conversations"),
        validation_alias=AliasChoices(
            "CONVERSATION_LOG_DIR",
            "conversation_log_dir",
        ),
    )
    logging_settings_path: Path = Field(
        default_factory=lambda: Path("logging_settings.conf"),
        validation_alias=AliasChoices(
            "LOGGING_SETTINGS_PATH",
            "logging_settings_path",
        ),
    )

    image_store_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("IMAGE_STORE_ENABLED", "image_store_enabled"),
    )
    image_url_ttl_hours: int = Field(
        default=24 * 7,
        ge=1,
        validation_alias=AliasChoices("IMAGE_URL_TTL_HOURS", "image_url_ttl_hours"),
    )
    gcs_bucket_name: str = Field(
        default="multimodal-chat",
        validation_alias=AliasChoices("GCS_BUCKET_NAME", "gcs_bucket_name"),
    )
    gcp_project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GCP_PROJECT_ID", "gcp_project_id"),
    )
    google_application_credentials: Path = Field(
        default_factory=lambda: Path("credentials/googlecloud/sa.json"),
        validation_alias=AliasChoices(
            "GOOGLE_APPLICATION_CREDENTIALS",
            "google_application_credentials",
        ),
    )

    def resolve_path(self, path: Path) -> Path:
        """Anchor relative paths at the project root."""

        if path.is_absolute():
            return path
        return PROJECT_ROOT / path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["DEFAULT_SYSTEM_PROMPT", "PROJECT_ROOT", "Settings", "get_settings"]
