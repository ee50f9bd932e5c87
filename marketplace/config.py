from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables.

    Security: SECRET_KEY must be 32+ bytes. Fails loudly if missing.
    """
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    TOKEN_ISSUER: Optional[str] = None
    DATABASE_URL: str = "sqlite:///./marketplace.db"
    SQL_ECHO: bool = False
    LOG_LEVEL: str = "INFO"

    # Payment gateway
    STRIPE_SECRET_KEY: str = ""
    STRIPE_CURRENCY: str = "usd"
    CHECKOUT_SUCCESS_URL: str = "http://localhost:3000/payment-success"
    CHECKOUT_CANCEL_URL: str = "http://localhost:3000/payment-cancel"

    # Object storage
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: Optional[str] = None
    SIGNED_URL_EXPIRY_SECONDS: int = 7 * 24 * 3600
    MAX_UPLOAD_BYTES: int = 500 * 1024 * 1024

    # Payment release queue
    PAYMENT_RELEASE_DELAY_SECONDS: int = 5
    PAYMENT_RELEASE_MAX_ATTEMPTS: int = 5
    PAYMENT_RELEASE_RETRY_SECONDS: int = 60
    WORKER_POLL_INTERVAL_SECONDS: int = 5
    BACKGROUND_WORKERS_ENABLED: bool = True

    # Cleanup rows younger than this may belong to a request still in flight
    STORAGE_CLEANUP_GRACE_SECONDS: int = 300

    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Validate SECRET_KEY length (prevents weak keys)
        if len(self.SECRET_KEY) < 32:
            raise ValueError(
                "SECRET_KEY must be at least 32 characters."
                "Generate with: openssl rand -hex 32"
            )

        if self.PAYMENT_RELEASE_DELAY_SECONDS < 0:
            raise ValueError("PAYMENT_RELEASE_DELAY_SECONDS cannot be negative")

        if self.PAYMENT_RELEASE_MAX_ATTEMPTS < 1:
            raise ValueError("PAYMENT_RELEASE_MAX_ATTEMPTS must be at least 1")

        if self.WORKER_POLL_INTERVAL_SECONDS < 1:
            raise ValueError("WORKER_POLL_INTERVAL_SECONDS must be at least 1")

        if self.STORAGE_CLEANUP_GRACE_SECONDS < 0:
            raise ValueError("STORAGE_CLEANUP_GRACE_SECONDS cannot be negative")

@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings singleton.
    Loaded once at startup, reused across requests and worker sweeps.
    """
    return Settings()
