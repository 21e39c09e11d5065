# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# Stripe, Resend and cron secrets are optional so local dev boots
# without them; the routes that need them refuse politely instead.

import json
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
        extra="ignore",
    )

    # Core DB connection string, like sqlite:///./entry.db or a Postgres URL.
    DATABASE_URL: str

    # Secret key used for signing admin and rep JWTs.
    SECRET_KEY: str

    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 12
    REP_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # Public base URL used in emails (ticket links, cart recovery, rep portal).
    APP_BASE_URL: str = "http://localhost:3000"

    # Tenancy: admin routes and public checkout both resolve the org here.
    ORG_HEADER_NAME: str = "X-Org-ID"
    DEFAULT_CURRENCY: str = "GBP"
    DEFAULT_ORDER_PREFIX: str = "ENTRY"

    # Stripe. The platform account takes application fees on
    # connected-account charges.
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_PUBLISHABLE_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_CONNECT_WEBHOOK_SECRET: Optional[str] = None

    # Resend transactional email.
    RESEND_API_KEY: Optional[str] = None
    EMAIL_FROM_ADDRESS: str = "tickets@entry.events"
    EMAIL_FROM_NAME: str = "Entry"

    # Platform alerts and digests go here. Empty disables them.
    PLATFORM_ALERT_EMAIL: Optional[str] = None
    ALERT_COOLDOWN_MINUTES: int = Field(default=30, gt=0)

    # Bearer secret for /cron/* routes (Vercel-style cron or any scheduler).
    CRON_SECRET: Optional[str] = None

    # Rate limits (requests per window, per client IP).
    CHECKOUT_RATE_LIMIT: int = 10
    CHECKOUT_RATE_WINDOW_SECONDS: int = 60
    DISCOUNT_RATE_LIMIT: int = 20
    DISCOUNT_RATE_WINDOW_SECONDS: int = 60
    AUTH_RATE_LIMIT: int = 10
    AUTH_RATE_WINDOW_SECONDS: int = 60
    CLIENT_ERROR_RATE_LIMIT: int = 30
    CLIENT_ERROR_RATE_WINDOW_SECONDS: int = 60

    # Structured logging. Requests slower than the threshold are tagged slow=True.
    LOG_LEVEL: str = "INFO"
    SLOW_REQUEST_MS: int = 1500

    # Abandoned cart automation.
    ABANDONED_CART_EXPIRY_DAYS: int = 7
    ABANDONED_CART_BATCH_SIZE: int = 100

    # Client IP extraction.
    TRUSTED_IP_HEADERS: List[str] = Field(
        default_factory=lambda: [
            "X-Forwarded-For",
            "X-Real-IP",
        ]
    )

    CORS_ALLOW_ORIGINS: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
        ]
    )

    @field_validator("TRUSTED_IP_HEADERS", "CORS_ALLOW_ORIGINS", mode="before")
    @classmethod
    def _parse_list_values(cls, value):
        if isinstance(value, str):
            parts = [p.strip() for p in value.split(",") if p.strip()]
            return parts
        return value

    @field_validator("DEFAULT_CURRENCY", mode="before")
    @classmethod
    def _upper_currency(cls, value):
        if isinstance(value, str):
            return value.strip().upper() or "GBP"
        return value


settings = Settings()
