"""Application configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="fragrance-lab-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # OpenAI
    openai_api_key: str = Field(..., description="OpenAI API key")
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI model to use")
    openai_temperature: float = Field(default=0.7, description="Sampling temperature for chat replies")
    openai_max_tokens: int = Field(default=1000, description="Max completion tokens per chat reply")
    max_context_messages: int = Field(default=20, description="Max messages to include in context")
    mock_openai: bool | None = Field(default=None, description="Mock OpenAI responses for local testing (saves tokens). Auto-enabled in development, disabled in production.")

    # Chat backend
    chat_api_url: str | None = Field(
        default=None,
        description="Remote chat API endpoint. When unset the in-process fragrance agent answers.",
    )
    chat_api_timeout_seconds: float = Field(default=30.0, description="Timeout for remote chat API calls")

    # Chat pacing
    split_part_delay_seconds: float = Field(default=1.0, description="Delay after each split reply part")
    follow_up_delay_seconds: float = Field(default=1.5, description="Delay before sending a backend follow-up")
    auto_transition_delay_seconds: float = Field(default=1.0, description="Delay before base -> finalized auto transition")
    auto_complete_delay_seconds: float = Field(default=2.5, description="Delay before finalized -> complete in auto-create")
    max_part_length: int = Field(default=500, description="Max characters per reply part")
    max_follow_ups_per_turn: int = Field(default=1, description="Max backend follow-ups sent per user turn")

    # Caches
    parse_cache_size: int = Field(default=100, description="Max entries in the message parse cache")
    parse_cache_ttl: int = Field(default=3600, description="Parse cache TTL in seconds")
    lab_session_cache_size: int = Field(default=1000, description="Max live lab sessions held in memory")
    lab_session_ttl: int = Field(default=3600, description="Idle lab session TTL in seconds")

    # Storage
    storage_backend: Literal["supabase", "memory"] = Field(
        default="supabase",
        description="Where client storage keys are persisted",
    )

    # Client cookie
    client_cookie_name: str = Field(default="fragrance_lab_client", description="Client id cookie name")
    client_cookie_max_age: int = Field(default=2592000, description="Client cookie max age in seconds (30 days)")
    client_cookie_secure: bool = Field(default=True, description="Use secure cookies (HTTPS only)")

    # Rate limiting
    rate_limit_requests: int = Field(default=15, description="Chat requests allowed per client per window")
    rate_limit_window_seconds: int = Field(default=60, description="Rate limit window in seconds")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_publishable_key: str = Field(default="", description="Stripe publishable key (for frontend)")
    lab_price_jpy: int = Field(default=4980, description="Price of a custom lab fragrance in JPY")
    lab_product_name: str = Field(default="オリジナルルームフレグランス", description="Checkout line item name")

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend application URL for redirects",
    )
    order_page_path: str = Field(default="/custom-order", description="Order page path on the frontend")

    @model_validator(mode="after")
    def set_mock_openai_default(self) -> "Settings":
        """Set mock_openai based on environment if not explicitly set via MOCK_OPENAI env var.

        - Production (APP_ENV=production): False unless MOCK_OPENAI is set
        - Development/Staging: True unless MOCK_OPENAI is set
        """
        if self.mock_openai is None:
            self.mock_openai = self.app_env != "production"

        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def order_url(self) -> str:
        """Absolute URL of the order page in lab mode."""
        return f"{self.frontend_url.rstrip('/')}{self.order_page_path}?mode=lab"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
