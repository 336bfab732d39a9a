"""Application configuration with environment variables."""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Product lifecycle webhooks (optional bearer secret)
    LIFECYCLE_WEBHOOK_SECRET: str = ""
    LIFECYCLE_CAMPAIGN_NAME: str = "Self-Serve Trials"  # Owns auto-created signup leads

    # Outbound notifications (empty = log only)
    NOTIFY_WEBHOOK_URL: str = ""
    NOTIFY_TIMEOUT_SECONDS: float = 5.0

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_WEBHOOK: int = 100  # Lifecycle/signup webhooks
    RATE_LIMIT_API: int = 60  # General API

    # Activation policy
    NO_SHOW_KILL_THRESHOLD: int = 2
    RESCHEDULE_KILL_THRESHOLD: int = 3
    STALE_BLOCKED_DAYS: int = 14
    MAX_BOOKING_WINDOW_DAYS: int = 14
    DEFAULT_MEETING_MINUTES: int = 30
    DEFAULT_VIEWER_TIMEZONE: str = "America/New_York"
    RECONCILE_BATCH_SIZE: int = 100

    # Activator conversion credit
    ACTIVATION_CREDIT_AMOUNT: Decimal = Decimal("5.00")
    ACTIVATION_CREDIT_WINDOW_DAYS: int = 30

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"


settings = Settings()
