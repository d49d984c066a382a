"""Configuration management."""

from functools import lru_cache

from pydantic import AliasChoices, Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from sogood.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings."""

    # Supabase (PostgREST row store)
    supabase_url: str = Field(
        "", validation_alias=AliasChoices("supabase_url", "next_public_supabase_url")
    )
    supabase_service_role_key: str = ""
    supabase_anon_key: str = Field(
        "",
        validation_alias=AliasChoices("supabase_anon_key", "next_public_supabase_anon_key"),
    )
    supabase_table: str = "sogood_rag"
    store_timeout_seconds: float = 30.0
    store_read_retry_delay_ms: int = 750

    # Anthropic
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_max_tokens: int = 4096
    anthropic_temperature: float = 0.3
    anthropic_timeout_ms: int = 120_000

    # Content pack repair loop
    content_pack_max_passes: int = 12
    content_pack_batch_size: int = 6

    # Google Docs export
    google_service_account_email: str = Field(
        "",
        validation_alias=AliasChoices("google_service_account_email", "google_client_email"),
    )
    google_service_account_private_key: str = Field(
        "",
        validation_alias=AliasChoices(
            "google_service_account_private_key", "google_private_key"
        ),
    )
    google_doc_share_type: str = "anyone"
    google_doc_share_role: str = "writer"
    google_doc_share_email: str = ""

    debug_context_export: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @computed_field
    @property
    def supabase_key(self) -> str:
        """Service-role key when available so server writes bypass anon RLS gaps."""
        return self.supabase_service_role_key or self.supabase_anon_key

    @computed_field
    @property
    def supabase_rest_url(self) -> str:
        """Base URL of the PostgREST API."""
        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    def require_store(self) -> None:
        """Fail fast when the row store is not configured."""
        if not self.supabase_url or not self.supabase_key:
            raise ConfigurationError(
                "Missing SUPABASE_URL and one of "
                "SUPABASE_SERVICE_ROLE_KEY/SUPABASE_ANON_KEY/NEXT_PUBLIC_SUPABASE_ANON_KEY"
            )

    def require_anthropic(self) -> None:
        """Fail fast when the model provider is not configured."""
        if not self.anthropic_api_key:
            raise ConfigurationError("Missing ANTHROPIC_API_KEY")


@lru_cache
def get_settings() -> Settings:
    """Build the settings object once per process."""
    return Settings()
