"""Runtime settings, read from the environment and an optional .env file."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Every field can be overridden by an environment variable of the same name."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # Reported by /health and tagged on Sentry events
    VERSION: str = "0.03.00"

    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Sentry; empty disables error tracking
    SENTRY_DSN: str = ""

    # Per-client requests per minute on each webhook route; 0 disables
    RATE_LIMIT_WEBHOOK: int = 100

    # Inbound webhooks
    WEBHOOK_MAX_PAYLOAD_BYTES: int = 1024 * 1024  # 1 MB
    CRM_WEBHOOK_SECRET: str = ""  # Required: CRM webhooks are always signed
    VOICE_WEBHOOK_SECRET: str = ""  # Optional: voice events are verified only when set

    # Phone normalization
    DEFAULT_PHONE_REGION: str = "US"

    # Structured extraction (LLM)
    AI_PROVIDER: str = "openai"  # 'openai' | 'gemini'
    AI_API_KEY: str = ""
    AI_MODEL: str = ""  # Empty = provider default
    AI_TIMEOUT_SECONDS: float = 60.0

    EXTRACTION_VERSION: str = "3.0"
    EXTRACTION_MAX_TRANSCRIPT_CHARS: int = 12000
    EXTRACTION_HEAD_RATIO: float = 0.6  # Share of the budget kept from the start of the call
    EXTRACTION_MIN_CONFIDENCE: float = 0.5
    EXTRACTION_MAX_RETRIES: int = 3  # 3 retries = 4 attempts
    EXTRACTION_RETRY_BASE_DELAY: float = 2.0
    EXTRACTION_RETRY_MAX_DELAY: float = 30.0
    EXTRACTION_MAX_ELAPSED_SECONDS: float = 90.0

    @property
    def cors_origins_list(self) -> list[str]:
        """Comma-separated CORS_ORIGINS as a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
