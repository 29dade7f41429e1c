"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Without a key the server runs in echo mode (no story generation)
    openrouter_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENROUTER_API_KEY", "openrouter_api_key"),
    )
    openrouter_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://openrouter.ai/api/v1"),
        validation_alias=AliasChoices("OPENROUTER_BASE_URL", "base_url"),
    )
    openrouter_app_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices(
            "OPENROUTER_APP_URL",
            "HTTP_REFERER",
            "REFERER",
        ),
    )
    openrouter_app_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OPENROUTER_APP_TITLE", "X_TITLE"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("OPENROUTER_TIMEOUT", "timeout"),
        ge=1,
    )

    story_model: str = Field(
        default="google/gemini-3-pro-preview",
        validation_alias=AliasChoices("STORY_MODEL", "story_model"),
    )
    image_model: str = Field(
        default="google/gemini-3-pro-image-preview",
        validation_alias=AliasChoices("IMAGE_MODEL", "image_model"),
    )
    summary_model: str = Field(
        default="google/gemini-2.5-flash",
        validation_alias=AliasChoices("SUMMARY_MODEL", "summary_model"),
    )

    # Google Cloud Text-to-Speech
    default_voice: str = Field(
        default="Puck",
        validation_alias=AliasChoices("DEFAULT_VOICE", "default_voice"),
    )
    default_tts_model: str = Field(
        default="gemini-2.5-flash-tts",
        validation_alias=AliasChoices("DEFAULT_TTS_MODEL", "default_tts_model"),
    )
    tts_language_code: str = Field(
        default="en-US",
        validation_alias=AliasChoices("TTS_LANGUAGE_CODE", "tts_language_code"),
    )
    synthesis_timeout: float = Field(
        default=60.0,
        validation_alias=AliasChoices("SYNTHESIS_TIMEOUT", "synthesis_timeout"),
        ge=1,
    )

    unit_queue_size: int = Field(
        default=5,
        ge=1,
        validation_alias=AliasChoices("UNIT_QUEUE_SIZE", "unit_queue_size"),
    )
    sentence_max_chars: int = Field(
        default=200,
        ge=1,
        validation_alias=AliasChoices("SENTENCE_MAX_CHARS", "sentence_max_chars"),
    )

    frontend_dir: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("FRONTEND_DIR", "frontend_dir"),
    )
    host: str = Field(default="0.0.0.0", validation_alias=AliasChoices("HOST"))
    port: int = Field(default=8080, validation_alias=AliasChoices("PORT"))

    @property
    def story_generation_enabled(self) -> bool:
        return self.openrouter_api_key is not None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
