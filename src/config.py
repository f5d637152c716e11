"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Glance configuration. All values come from environment variables."""

    # Backend: "local" (libSQL file / Turso) or "supabase" (hosted)
    backend: str = Field(default="local")

    # Supabase
    supabase_url: str = Field(default="")
    supabase_anon_key: str = Field(default="")
    supabase_access_token: str = Field(default="")
    chat_engine_function: str = Field(default="chat-engine")

    # Database (local backend)
    database_path: Path = Field(default=Path("data/glance.db"))

    # Turso (hosted libSQL); when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Completion: "chat_engine" (Supabase edge function) or "anthropic"
    completion_backend: str = Field(default="chat_engine")
    anthropic_api_key: str = Field(default="")
    claude_model: str = Field(default="claude-sonnet-4-5-20250929")
    completion_max_tokens: int = Field(default=1024)

    # Vapi voice calls
    vapi_api_key: str = Field(default="")
    vapi_assistant_id: str = Field(default="")
    vapi_base_url: str = Field(default="https://api.vapi.ai")
    vapi_server_url: str = Field(default="")
    vapi_webhook_secret: str = Field(default="")
    voice_requires_agent: bool = Field(default=False)

    # Playground behaviour
    agent_source: str = Field(default="catalog")
    history_filter_by_agent: bool = Field(default=True)
    auto_select_first_agent: bool = Field(default=True)

    # Telegram
    telegram_bot_token: str = Field(default="")
    allowed_user_ids: str = Field(default="")
    allow_guests: bool = Field(default=False)

    # Webhooks
    webhook_port: int = Field(default=8443)

    # HTTP
    http_timeout_seconds: float = Field(default=30.0)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_allowed_user_ids(self) -> set[int]:
        """Parse ALLOWED_USER_IDS into a set of ints."""
        if not self.allowed_user_ids.strip():
            return set()
        return {int(uid.strip()) for uid in self.allowed_user_ids.split(",") if uid.strip()}

    def chat_engine_url(self) -> str:
        """Full URL of the chat-engine edge function, or "" if unconfigured."""
        base = self.supabase_url.rstrip("/")
        if not base:
            return ""
        return f"{base}/functions/v1/{self.chat_engine_function}"

    def voice_server_url(self) -> str:
        """Where the voice vendor should post call events.

        Falls back to the chat-engine function, which is what the hosted
        assistant was originally pointed at.
        """
        return self.vapi_server_url or self.chat_engine_url()


settings = Settings()
