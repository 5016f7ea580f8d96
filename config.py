"""Configuration management using Pydantic settings"""

from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Server
    APP_ENV: str = "development"
    HOST: str = "localhost"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Firebase (credentials file or application default credentials)
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None
    FIREBASE_PROJECT_ID: Optional[str] = None

    # Razorpay fallback keys. The admin-managed adminSettings/razorpay
    # document takes precedence when GATEWAY_SETTINGS_FROM_STORE is on.
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    GATEWAY_SETTINGS_FROM_STORE: bool = True
    PAYMENT_CURRENCY: str = "INR"

    # Orders left in "created" longer than this are cancelled by the
    # admin cleanup endpoint
    STALE_ORDER_HOURS: int = 48

    # Write the built-in plan catalog on startup for any missing plan ids
    SEED_DEFAULT_PLANS: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"


settings = Settings()
