# backend/core/config.py

"""
Configuration settings for the EngagePerfect backend.
"""

import os
from pydantic_settings import BaseSettings
from pydantic import validator
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

class Settings(BaseSettings):
    """Application settings class using Pydantic for validation"""

    # Application info
    APP_NAME: str = "EngagePerfect"
    VERSION: str = "1.0.0"
    DEBUG: bool = os.getenv("DEBUG", "False") == "True"
    PRODUCTION: bool = os.getenv("PRODUCTION", "False") == "True"

    # Server settings
    PORT: int = int(os.getenv("PORT", "5050"))
    HOST_URL: Optional[str] = os.getenv("HOST_URL")

    # Database settings
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./engageperfect.db")
    DB_TIMEOUT_SECONDS: int = int(os.getenv("DB_TIMEOUT_SECONDS", "10"))

    # Authentication and security
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "change-this-in-production")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 1 day
    ADMIN_EMAILS: str = os.getenv("ADMIN_EMAILS", "")

    # CORS Settings
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # OpenAI settings
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_TIMEOUT_SECONDS: float = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "60"))

    # Partner program
    DEFAULT_COMMISSION_RATE: float = float(os.getenv("DEFAULT_COMMISSION_RATE", "0.6"))
    ALLOWED_COMMISSION_RATES: str = os.getenv("ALLOWED_COMMISSION_RATES", "0.4,0.5,0.6,0.7")
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "usd")
    ATTRIBUTION_MAX_RETRIES: int = int(os.getenv("ATTRIBUTION_MAX_RETRIES", "3"))
    REFERRAL_CODE_MAX_AGE_SECONDS: int = int(os.getenv("REFERRAL_CODE_MAX_AGE_SECONDS", "300"))

    # Billing webhook (HMAC-SHA256 of the raw body)
    BILLING_WEBHOOK_SECRET: str = os.getenv("BILLING_WEBHOOK_SECRET", "")

    # Generation error recovery
    RECOVERY_BASE_DELAY_MS: int = int(os.getenv("RECOVERY_BASE_DELAY_MS", "1000"))
    RECOVERY_MAX_DELAY_MS: int = int(os.getenv("RECOVERY_MAX_DELAY_MS", "30000"))
    DEFAULT_LANGUAGE: str = os.getenv("DEFAULT_LANGUAGE", "en")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_TO_FILE: bool = os.getenv("LOG_TO_FILE", "True") == "True"

    @validator("HOST_URL")
    def validate_host_url(cls, v):
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("HOST_URL must start with http:// or https://")
        return v

    @validator("DATABASE_URL")
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL must be set")
        return v

    @validator("DEFAULT_COMMISSION_RATE")
    def validate_default_rate(cls, v, values):
        if not 0 < v < 1:
            raise ValueError("DEFAULT_COMMISSION_RATE must be a fraction between 0 and 1")
        return v

    @validator("ALLOWED_COMMISSION_RATES")
    def validate_allowed_rates(cls, v):
        try:
            rates = [float(r) for r in v.split(",") if r.strip()]
        except ValueError:
            raise ValueError("ALLOWED_COMMISSION_RATES must be a comma separated list of fractions")
        if not rates or any(not 0 < r < 1 for r in rates):
            raise ValueError("ALLOWED_COMMISSION_RATES must contain fractions between 0 and 1")
        return v

    @validator("LOG_LEVEL")
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown LOG_LEVEL: {v}")
        return level

    @property
    def allowed_commission_rates(self) -> List[str]:
        """Allowed rates as normalized decimal strings, e.g. ['0.4', '0.5']"""
        return [str(float(r)) for r in self.ALLOWED_COMMISSION_RATES.split(",") if r.strip()]

    @property
    def admin_emails(self) -> List[str]:
        return [e.strip().lower() for e in self.ADMIN_EMAILS.split(",") if e.strip()]

    class Config:
        """Pydantic settings configuration"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

# Create a global settings instance
try:
    settings = Settings()
except Exception as e:
    print(f"❌ Configuration error: {str(e)}")
    print("Please check your .env file and fix the configuration issues.")
    raise
