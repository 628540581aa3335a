"""Settings for the storefront support chat client."""

from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
    if env_names:
        alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
        return Field(default=default, validation_alias=alias)
    return Field(default=default)


class Settings(BaseSettings):
    environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
    service_name: str = _env_field("storefront-chat", "SERVICE_NAME")
    git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")

    # Backend collaborator endpoints
    api_base_url: str = _env_field("http://localhost:3000", "CHAT_API_BASE_URL", "API_BASE_URL")
    realtime_url: str = _env_field("http://localhost:3000", "CHAT_REALTIME_URL", "REALTIME_URL")
    realtime_namespace: str = _env_field("/chat-live", "CHAT_REALTIME_NAMESPACE")
    realtime_event: str = _env_field("chat:change", "CHAT_REALTIME_EVENT")
    request_timeout_seconds: float = _env_field(10.0, "CHAT_REQUEST_TIMEOUT_SECONDS")

    # Permanent deletes wait this long for an inline confirmation before expiring
    pending_delete_timeout_seconds: float = _env_field(10.0, "CHAT_PENDING_DELETE_TIMEOUT_SECONDS")

    obs_enabled: bool = _env_field(True, "OBS_ENABLED")
    obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
    obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("api_base_url", "realtime_url", mode="before")
    def _strip_trailing_slash(cls, value):
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @field_validator("realtime_namespace", mode="before")
    def _leading_slash(cls, value):
        if isinstance(value, str):
            text = value.strip()
            if text and not text.startswith("/"):
                return f"/{text}"
            return text or "/"
        return value


def _normalise_level(level: str) -> str:
    return level.upper()


settings = Settings()
settings.obs_log_level = _normalise_level(settings.obs_log_level)
