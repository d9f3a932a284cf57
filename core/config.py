# ==================================================================================
# core/config.py: GymFlow Configuration (Razorpay + SendGrid + Queue workers)
# ==================================================================================
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import EmailStr, ValidationError
import sys


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str = "sqlite:///./gymflow.db"

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ------------------------
    # SENDGRID EMAIL CONFIG
    # ------------------------
    SENDGRID_API_KEY: str | None = None
    MAIL_FROM: EmailStr | None = None  # Example: "billing@gymflow.app"

    # ------------------------
    # FRONTEND CONFIG
    # ------------------------
    APP_NAME: str = "GymFlow"
    FRONTEND_URL: str = "http://localhost:5173"

    # ------------------------
    # RAZORPAY / PAYMENT CONFIG
    # ------------------------
    RAZORPAY_KEY_ID: str | None = None
    RAZORPAY_KEY_SECRET: str | None = None
    RAZORPAY_WEBHOOK_SECRET: str | None = None
    RAZORPAY_API_BASE: str = "https://api.razorpay.com/v1"
    PAYMENT_CURRENCY: str = "INR"
    GATEWAY_TIMEOUT_SECONDS: float = 15.0

    # ------------------------
    # SUBSCRIPTIONS
    # ------------------------
    ACCESS_CODE_LENGTH: int = 8
    SUBSCRIPTION_EXPIRY_CHECK_SECONDS: int = 3600  # hourly sweep

    # ------------------------
    # QUEUE WORKERS (audit logs, notifications, payment events)
    # ------------------------
    QUEUE_WORKERS_ENABLED: bool = True
    QUEUE_CONCURRENCY: int = 5
    QUEUE_RATE_LIMIT: int = 100  # jobs per QUEUE_RATE_PERIOD_SECONDS
    QUEUE_RATE_PERIOD_SECONDS: float = 1.0
    QUEUE_MAX_ATTEMPTS: int = 3
    QUEUE_BACKOFF_SECONDS: float = 1.0
    QUEUE_FAILED_RETENTION_HOURS: int = 24
    QUEUE_STALLED_AFTER_SECONDS: int = 300
    QUEUE_POLL_INTERVAL_SECONDS: float = 1.0

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production'
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @property
    def IS_PRODUCTION(self) -> bool:
        """Convenience helper to check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def RAZORPAY_ENABLED(self) -> bool:
        return bool(self.RAZORPAY_KEY_ID and self.RAZORPAY_KEY_SECRET)

    # ------------------------
    # Pydantic v2 Settings
    # ------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
    print("✅ Environment variables loaded successfully.")
    print(f"🌍 Environment: {settings.ENVIRONMENT}, Debug: {settings.DEBUG}")
except ValidationError as e:
    print("❌ Environment configuration error: missing or invalid settings!")
    print(e)
    sys.exit(1)
