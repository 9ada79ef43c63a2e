from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator
from typing import List, Optional


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Storefront Checkout API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Email
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAILS_FROM_EMAIL: str = ""
    EMAILS_FROM_NAME: str = "Storefront"
    EMAILS_FROM_ORDERS: str = ""
    DEFAULT_LOCALE: str = "en"

    # Environment
    ENVIRONMENT: str = "development"
    ENV: Optional[str] = Field(default=None)

    DEBUG: bool = False

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    # Celery & Redis (Task Queue + recommendation cache)
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    RECOMMENDATION_CACHE_TTL_SECONDS: int = 3600

    # Anonymous cart cookie
    CART_COOKIE_NAME: str = "cart_id"
    CART_COOKIE_MAX_AGE_SECONDS: int = 60 * 60 * 24 * 365
    CART_COOKIE_SECURE: bool = False

    # Shipping snapshot
    DEFAULT_SHIPPING_COUNTRY: str = "KR"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_ENABLED: bool = False
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_API_BASE: str = "https://api.stripe.com"

    # Toss Payments
    TOSS_SECRET_KEY: str = ""
    TOSS_API_BASE: str = "https://api.tosspayments.com"

    PAYMENT_HTTP_TIMEOUT_SECONDS: float = 10.0

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("DEFAULT_LOCALE")
    @classmethod
    def validate_locale(cls, value: str) -> str:
        normalized = value.lower().strip()
        if normalized not in {"en", "ko"}:
            raise ValueError("DEFAULT_LOCALE must be 'en' or 'ko'")
        return normalized

    @model_validator(mode="after")
    def validate_production_secrets(self):
        if self.ENVIRONMENT == "production":
            normalized_secret = (self.SECRET_KEY or "").strip()
            if len(normalized_secret) < 32 or "your-secret-key-here" in normalized_secret.lower():
                raise ValueError("SECRET_KEY must be at least 32 chars and not use placeholders in production")
            if (self.STRIPE_SECRET_KEY or "").startswith("sk_test_"):
                raise ValueError("STRIPE_SECRET_KEY must use live key in production")
            if self.STRIPE_WEBHOOK_ENABLED and not self.STRIPE_WEBHOOK_SECRET:
                raise ValueError("STRIPE_WEBHOOK_SECRET must be set when the Stripe webhook is enabled")
        return self

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
