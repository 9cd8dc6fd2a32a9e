"""Application configuration management."""
from pydantic import model_validator, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from functools import lru_cache
from sqlalchemy.engine.url import make_url, URL
from typing import Annotated, Optional
import json
import logging

SQLITE_LOCAL_URL = "sqlite+aiosqlite:///./rewards.db"

DEFAULT_SURVEY_GROUPS = {
    "registration": {
        "name": "Registration",
        "surveys": ["3xqyg9", "wbp8L6"],  # ru and uz variants
        "description": "Onboarding questionnaire published once per language",
    },
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = SQLITE_LOCAL_URL
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Application
    frontend_url: str = "https://t.me/survey_rewards_bot/app"
    environment: str = "development"
    diagnostics_enabled: bool = False  # Expose /diagnostics routes (support builds only)
    identity_header: str = "X-Telegram-Id"

    # Form service (Tally proxy)
    form_service_url: str = "http://localhost:8010/api"
    form_service_api_key: str = ""
    form_service_timeout_seconds: float = 10.0  # Matches the client-side request timeout
    catalog_timeout_seconds: float = 10.0
    probe_timeout_seconds: float = 5.0
    probe_concurrency: int = 4  # Max concurrent status probes per resolve

    # Tally webhooks; an empty secret disables signature verification
    tally_webhook_secret: str = ""
    tally_signature_header: str = "X-Tally-Signature"

    # Availability resolution
    default_language: str = "ru"
    supported_languages: Annotated[list[str], NoDecode] = ["ru", "uz"]
    hide_closed_surveys: bool = True
    cache_remote_completions: bool = True  # Backfill remote "already responded" into local store
    refresh_delay_seconds: float = 0.1  # Delay before re-resolving after a submission
    availability_cache_ttl_seconds: float = 15.0

    # Equivalence groups: {group_id: {"name": ..., "surveys": [...]}}
    survey_groups: dict[str, dict] = DEFAULT_SURVEY_GROUPS

    # Rewards shown next to each survey (whole sum)
    survey_base_prize: int = 20000
    survey_additional_prize: int = 5000
    lottery_amount: int = 3000000
    lottery_eligible: bool = True

    @field_validator("supported_languages", mode="before")
    @classmethod
    def parse_supported_languages(cls, value):
        """Parse comma-separated language codes from environment variables."""
        if value is None:
            return cls.model_fields["supported_languages"].default
        if isinstance(value, str):
            items = [item.strip().lower() for item in value.split(",") if item.strip()]
        elif isinstance(value, (list, tuple, set)):
            items = [str(item).strip().lower() for item in value if str(item).strip()]
        else:
            raise TypeError("supported_languages must be provided as a string or sequence")
        # Keep declaration order, drop duplicates.
        return list(dict.fromkeys(items))

    @field_validator("survey_groups", mode="before")
    @classmethod
    def parse_survey_groups(cls, value):
        """Accept survey groups as a JSON string (environment) or a mapping."""
        if value is None or value == "":
            return cls.model_fields["survey_groups"].default
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError("survey_groups must be valid JSON") from exc
        if not isinstance(value, dict):
            raise TypeError("survey_groups must be a mapping of group id to group definition")
        return value

    def is_supported_language(self, language: str | None) -> bool:
        """Determine if the provided language code is served."""
        if not language:
            return False
        return language.strip().lower() in self.supported_languages

    @model_validator(mode="after")
    def validate_all_config(self):
        """Validate resolution tuning and normalize Postgres URLs."""
        logger = logging.getLogger(__name__)

        if not self.supported_languages:
            raise ValueError("supported_languages must contain at least one language")

        self.default_language = self.default_language.strip().lower()
        if self.default_language not in self.supported_languages:
            raise ValueError(
                f"default_language '{self.default_language}' must be one of {self.supported_languages}"
            )

        if self.probe_concurrency < 1:
            raise ValueError("probe_concurrency must be at least 1")

        if self.probe_timeout_seconds <= 0 or self.catalog_timeout_seconds <= 0:
            raise ValueError("probe and catalog timeouts must be positive")

        if self.refresh_delay_seconds < 0:
            raise ValueError("refresh_delay_seconds cannot be negative")

        # Database URL normalization
        url = self.database_url
        if not url:
            logger.warning("Empty DATABASE_URL, using SQLite fallback")
            self.database_url = SQLITE_LOCAL_URL
            return self

        parsed: Optional[URL] = None
        try:
            parsed = make_url(url)
        except Exception as e:  # pragma: no cover
            logger.error(f"Failed to parse DATABASE_URL: {e}")
            self.database_url = SQLITE_LOCAL_URL
            return self

        drivername = parsed.drivername
        if drivername.startswith("postgres") and "+asyncpg" not in drivername:
            old_drivername = drivername
            parsed = parsed.set(drivername="postgresql+asyncpg")
            logger.info(f"Driver normalized: {old_drivername} -> {parsed.drivername}")
        # Use render_as_string to properly re-encode special characters in password
        self.database_url = parsed.render_as_string(hide_password=False)

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
