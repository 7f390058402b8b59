"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Configuration
    service_host: str = Field(default="0.0.0.0", description="Service host")
    service_port: int = Field(default=8000, description="Service port")
    log_level: str = Field(default="INFO", description="Logging level")
    docs_enabled: bool = Field(
        default=True, description="Expose /docs, /redoc and /openapi.json"
    )

    # Database
    database_url: Optional[str] = Field(
        default=None,
        description="PostgreSQL connection URL. Without it runs are kept in memory.",
    )
    db_pool_min_size: int = Field(default=1, description="Minimum connection pool size")
    db_pool_max_size: int = Field(default=10, description="Maximum connection pool size")
    db_ssl: bool = Field(default=False, description="Require SSL for database connections")

    # Engine
    app_id: str = Field(default="edujobs", description="App id reported by discovery")
    engine_mode: Literal["self_hosted", "broker"] = Field(
        default="self_hosted",
        description="self_hosted runs the resume worker; broker waits for PUT callbacks",
    )
    webhook_path: str = Field(
        default="/api/jobs", description="Path of the GET/POST/PUT webhook endpoint"
    )
    signing_key: Optional[str] = Field(
        default=None,
        description="Shared HMAC key for webhook signatures. Unset disables verification.",
    )
    signature_tolerance_s: int = Field(
        default=300, description="Maximum age of a signed request in seconds"
    )
    event_broker_url: Optional[str] = Field(
        default=None,
        description="Broker event ingest URL. Unset sends events in-process.",
    )
    event_key: Optional[str] = Field(
        default=None, description="Event key appended to the broker URL"
    )
    event_send_timeout_s: float = Field(
        default=10.0, description="Timeout for event delivery to the broker"
    )
    run_lock_timeout_s: int = Field(
        default=900,
        description="A run lock older than this is considered abandoned",
    )
    throttle_retry_s: float = Field(
        default=5.0,
        description="Delay suggested to the broker when a run is busy or throttled",
    )
    worker_poll_interval_s: float = Field(
        default=1.0, description="Resume worker poll interval in seconds"
    )
    worker_parallelism: int = Field(
        default=4, ge=1, description="Runs advanced concurrently by the resume worker"
    )
    worker_batch_size: int = Field(
        default=20, ge=1, description="Due runs fetched per poll"
    )

    # LLM Provider Configuration
    llm_provider: Literal["auto", "anthropic", "openai", "openrouter"] = Field(
        default="auto",
        description="LLM provider: auto prefers Anthropic > OpenAI > OpenRouter",
    )
    llm_enabled: bool = Field(
        default=True,
        description="Kill switch to disable LLM regardless of keys",
    )
    anthropic_api_key: Optional[str] = Field(
        default=None, description="Anthropic API key (preferred provider)"
    )
    openai_api_key: Optional[str] = Field(
        default=None, description="OpenAI API key (second preference)"
    )
    openrouter_api_key: Optional[str] = Field(
        default=None, description="OpenRouter API key (fallback provider)"
    )
    generation_model: str = Field(
        default="claude-sonnet-4",
        description="Model for question generation and grading",
    )
    llm_timeout: int = Field(default=120, description="LLM request timeout in seconds")
    max_passage_tokens: int = Field(
        default=12000, description="Passage text is truncated to this many tokens"
    )
    tokenizer_encoding: str = Field(
        default="cl100k_base", description="Tiktoken encoding used for truncation"
    )

    # Email
    resend_api_key: Optional[str] = Field(
        default=None, description="Resend API key. Unset marks emails as skipped."
    )
    email_from: str = Field(
        default="noreply@classlite.com", description="Sender address"
    )
    webapp_url: str = Field(
        default="http://localhost:5173", description="Base URL used in email links"
    )
    display_timezone: str = Field(
        default="Asia/Ho_Chi_Minh", description="Timezone for dates in emails"
    )

    # Identity provider
    identity_api_key: Optional[str] = Field(
        default=None, description="Identity Toolkit API key for account revocation"
    )
    identity_project_id: Optional[str] = Field(
        default=None, description="Identity Toolkit project id"
    )

    # Object storage
    storage_base_url: Optional[str] = Field(
        default=None, description="Base URL documents are fetched from"
    )
    storage_token: Optional[str] = Field(
        default=None, description="Bearer token for the document store"
    )

    # Jobs
    deletion_grace_period_days: int = Field(
        default=7, description="Days between a deletion request and the deletion"
    )
    import_batch_size: int = Field(default=10, description="Rows per import batch")

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, description="Enable rate limiting")
    rate_limit_requests_per_minute: int = Field(
        default=600, description="Maximum requests per minute per IP"
    )

    cors_origins: str = Field(
        default="*", description="Comma-separated allowed origins for the admin UI"
    )

    # Request size limits
    max_request_body_size: int = Field(
        default=5 * 1024 * 1024,  # 5 MB
        description="Maximum request body size in bytes",
    )

    # API Key Authentication
    api_key: Optional[str] = Field(
        default=None,
        description="Optional API key. If set, non-public requests must include X-API-Key",
    )
    api_key_header_name: str = Field(
        default="X-API-Key", description="Header name for API key"
    )
    admin_token: Optional[str] = Field(
        default=None, description="Token required by the admin runs API"
    )

    # Sentry Observability
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking and performance monitoring",
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment tag (development, staging, production)",
    )
    sentry_traces_sample_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry performance tracing sample rate (0.0-1.0)",
    )
    sentry_profiles_sample_rate: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Sentry profiling sample rate (0.0-1.0)",
    )

    @property
    def broker_event_url(self) -> Optional[str]:
        """Full event ingest URL, including the event key if configured."""
        if not self.event_broker_url:
            return None
        base = self.event_broker_url.rstrip("/")
        return f"{base}/{self.event_key}" if self.event_key else base


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
