# /backend/wardround/config.py

from pydantic import BaseModel
from typing import Optional
import os
import logging

logger = logging.getLogger(__name__)

_DEFAULT_SECRET_KEY = "change-me-ward-round-jwt-secret"
_DEFAULT_ENCRYPTION_KEY = "change-me-32-char-encryption-key"


class Settings(BaseModel):
    # App Settings
    APP_NAME: str = "Ward Rounding API"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "wardround"

    # Security
    SECRET_KEY: str = _DEFAULT_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 7 * 24 * 60  # 7 days
    ENCRYPTION_KEY: str = _DEFAULT_ENCRYPTION_KEY
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 15

    # Completion provider (Gemini REST)
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_VISION_MODEL: str = "gemini-2.5-flash"
    LLM_TIMEOUT_SECONDS: float = 60.0
    LLM_MAX_RETRIES: int = 1
    LLM_RETRY_BACKOFF_SECONDS: float = 1.0

    # Reconciliation
    LAB_DEDUPE: bool = True

    # Rate limiting
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_MAX_REQUESTS: int = 100

    # CORS
    CORS_ORIGINS: list = ["http://localhost:5173"]

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Load from environment variables
        self.DEBUG = os.getenv("DEBUG", str(self.DEBUG)).lower() == "true"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", self.LOG_LEVEL).upper()
        self.MONGODB_URL = os.getenv("MONGODB_URL", self.MONGODB_URL)
        self.DATABASE_NAME = os.getenv("DATABASE_NAME", self.DATABASE_NAME)
        self.SECRET_KEY = os.getenv("SECRET_KEY", self.SECRET_KEY)
        self.ACCESS_TOKEN_EXPIRE_MINUTES = int(
            os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", self.ACCESS_TOKEN_EXPIRE_MINUTES)
        )
        self.ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY", self.ENCRYPTION_KEY)
        self.MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", self.MAX_LOGIN_ATTEMPTS))
        self.LOCKOUT_MINUTES = int(os.getenv("LOCKOUT_MINUTES", self.LOCKOUT_MINUTES))
        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", self.GEMINI_API_KEY)
        self.GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", self.GEMINI_BASE_URL)
        self.GEMINI_MODEL = os.getenv("GEMINI_MODEL", self.GEMINI_MODEL)
        self.GEMINI_VISION_MODEL = os.getenv("GEMINI_VISION_MODEL", self.GEMINI_VISION_MODEL)
        self.LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", self.LLM_TIMEOUT_SECONDS))
        self.LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", self.LLM_MAX_RETRIES))
        self.LLM_RETRY_BACKOFF_SECONDS = float(
            os.getenv("LLM_RETRY_BACKOFF_SECONDS", self.LLM_RETRY_BACKOFF_SECONDS)
        )
        self.LAB_DEDUPE = os.getenv("LAB_DEDUPE", str(self.LAB_DEDUPE)).lower() == "true"
        self.RATE_LIMIT_WINDOW_SECONDS = int(
            os.getenv("RATE_LIMIT_WINDOW_SECONDS", self.RATE_LIMIT_WINDOW_SECONDS)
        )
        self.RATE_LIMIT_MAX_REQUESTS = int(
            os.getenv("RATE_LIMIT_MAX_REQUESTS", self.RATE_LIMIT_MAX_REQUESTS)
        )
        cors = os.getenv("CORS_ORIGINS")
        if cors:
            self.CORS_ORIGINS = [origin.strip() for origin in cors.split(",") if origin.strip()]

    def validate_for_startup(self) -> None:
        """
        Fail fast on unsafe production configuration.

        Raises RuntimeError outside DEBUG when the JWT secret or encryption key
        still hold their defaults. A missing provider key is only a warning:
        every AI feature degrades to "nothing extracted".
        """
        problems = []
        if not self.DEBUG:
            if self.SECRET_KEY == _DEFAULT_SECRET_KEY:
                problems.append("SECRET_KEY")
            if self.ENCRYPTION_KEY == _DEFAULT_ENCRYPTION_KEY:
                problems.append("ENCRYPTION_KEY")
        if self.RATE_LIMIT_WINDOW_SECONDS <= 0 or self.RATE_LIMIT_MAX_REQUESTS <= 0:
            problems.append("RATE_LIMIT_WINDOW_SECONDS/RATE_LIMIT_MAX_REQUESTS")
        if problems:
            raise RuntimeError(f"Invalid configuration: {', '.join(problems)}")

        if not self.GEMINI_API_KEY:
            logger.warning("GEMINI_API_KEY not set; AI extraction will return empty results")


settings = Settings()
