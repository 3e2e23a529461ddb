from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_SECRET: Optional[str] = None
    ALGORITHM: str = "HS256"
    # Default token lifetime (in minutes) for dashboard sessions.
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(300, gt=0)
    DEBUG: bool = False

    @property
    def secret_key(self) -> str:
        return self.JWT_SECRET or self.SECRET_KEY

    # DATABASE_URL must be provided via environment (Postgres in production).
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    FRONTEND_URL: str = "http://localhost:5173"

    # Mercado Livre OAuth application. The redirect URI must match the one
    # registered in the Mercado Livre developer console exactly.
    MERCADOLIVRE_CLIENT_ID: Optional[str] = None
    MERCADOLIVRE_CLIENT_SECRET: Optional[str] = None
    MERCADOLIVRE_REDIRECT_URI: Optional[str] = None
    MERCADOLIVRE_API_BASE_URL: str = "https://api.mercadolibre.com"
    MERCADOLIVRE_AUTH_URL: str = "https://auth.mercadolivre.com.br/authorization"
    MERCADOLIVRE_OAUTH_SCOPES: str = "read write offline_access read_finance read_reputation"
    MERCADOLIVRE_HTTP_TIMEOUT_SECONDS: float = Field(20.0, gt=0)

    # Bling (ERP / fulfillment). When BLING_API_KEY is empty, status pushes
    # are skipped with a warning instead of failing.
    BLING_API_KEY: Optional[str] = None
    BLING_API_URL: str = "https://bling.com.br/Api/v2"
    BLING_HTTP_TIMEOUT_SECONDS: float = Field(15.0, gt=0)

    # Access tokens are renewed this many minutes before they expire.
    TOKEN_REFRESH_SAFETY_MARGIN_MINUTES: int = Field(5, ge=0)

    # Order sync: every ORDER_SYNC_INTERVAL_MINUTES, re-read the orders
    # updated in the last ORDER_SYNC_WINDOW_MINUTES. The window must overlap
    # the interval so a missed tick is picked up by the next one.
    ORDER_SYNC_INTERVAL_MINUTES: int = Field(30, gt=0)
    ORDER_SYNC_WINDOW_MINUTES: int = Field(60, gt=0)
    ORDER_SYNC_PAGE_LIMIT: int = Field(50, gt=0, le=50)
    ORDER_DETAIL_CONCURRENCY: int = Field(10, gt=0, le=50)
    ORDER_SYNC_DEADLINE_SECONDS: int = Field(480, gt=0)

    TASK_OVERDUE_INTERVAL_MINUTES: int = Field(60, gt=0)
    DAILY_METRICS_HOUR: int = Field(1, ge=0, le=23)
    SELLER_TIMEZONE: str = "America/Sao_Paulo"

    # Global kill-switch for the background loops started by app.main.
    WORKERS_ENABLED: bool = True

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @field_validator("SELLER_TIMEZONE")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown SELLER_TIMEZONE: {value}") from exc
        return value

    @property
    def seller_tz(self) -> ZoneInfo:
        return ZoneInfo(self.SELLER_TIMEZONE)

    @property
    def mercadolivre_configured(self) -> bool:
        return bool(
            self.MERCADOLIVRE_CLIENT_ID
            and self.MERCADOLIVRE_CLIENT_SECRET
            and self.MERCADOLIVRE_REDIRECT_URI
        )

    @property
    def bling_configured(self) -> bool:
        return bool((self.BLING_API_KEY or "").strip())


_db_url = os.getenv("DATABASE_URL")
if not _db_url:
    raise RuntimeError("DATABASE_URL is required (Postgres in production, sqlite:// for local runs).")

settings = Settings()
