# session_ledger/config.py
import os
from decimal import Decimal
from functools import lru_cache
from urllib.parse import quote_plus

from dotenv import load_dotenv

load_dotenv()


class Settings:
    # ---- Database ----
    DB_USER: str = os.getenv("DB_USER", "ledger")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", "abc123")
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: str = os.getenv("DB_PORT", "3306")
    DB_NAME: str = os.getenv("DB_NAME", "session_ledger")

    # Full URL wins; else build from parts (defaults to MySQL/PyMySQL)
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        f"mysql+pymysql://{quote_plus(DB_USER)}:{quote_plus(DB_PASSWORD)}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
    )

    # Alias for libraries that expect this name
    SQLALCHEMY_DATABASE_URL: str = os.getenv(
        "SQLALCHEMY_DATABASE_URL",
        DATABASE_URL,
    )

    DB_POOL_PRE_PING: bool = os.getenv("DB_POOL_PRE_PING", "true").lower() == "true"

    # ---- Application ----
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "local")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    APP_URL: str = os.getenv("APP_URL", "http://localhost:8000")

    # ---- Ledger rules ----
    SESSION_VALIDATION_EXPIRY_DAYS: int = int(os.getenv("SESSION_VALIDATION_EXPIRY_DAYS", "30"))
    # Currency-rounding tolerance when comparing a payment with the balance
    PAYMENT_EPSILON: Decimal = Decimal(os.getenv("PAYMENT_EPSILON", "0.01"))

    # ---- Notifications (best-effort, after commit) ----
    NOTIFY_MAX_RETRIES: int = int(os.getenv("NOTIFY_MAX_RETRIES", "3"))
    NOTIFY_BACKOFF_SECONDS: float = float(os.getenv("NOTIFY_BACKOFF_SECONDS", "1.0"))
    NOTIFY_MAX_BACKOFF_SECONDS: float = float(os.getenv("NOTIFY_MAX_BACKOFF_SECONDS", "10.0"))

    def validation_url(self, token: str) -> str:
        return f"{self.APP_URL.rstrip('/')}/validate/{token}"

    # Helpers
    @property
    def is_sqlite(self) -> bool:
        return self.SQLALCHEMY_DATABASE_URL.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    return Settings()
