"""Service configuration."""

from decimal import Decimal
from typing import Literal, Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration for the SpendGate service."""

    model_config = ConfigDict(
        env_prefix="SPENDGATE_",
        env_file=".env",
        extra="ignore",  # Ignore extra fields from .env
    )

    # Service settings
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    # Card vendor
    card_backend: Literal["mock", "stripe"] = "mock"
    stripe_api_key: Optional[str] = None
    card_currency: str = "USD"

    # Funding window for every top-up
    funding_timeout_seconds: int = 120

    # Wallet deposits
    max_deposit_amount: Decimal = Decimal("10000")

    # Audit trail (":memory:" keeps it in-process)
    audit_db_path: str = ":memory:"

    # Approval notifications
    notification_channel: Literal["log", "telegram"] = "log"
    telegram_bot_token: Optional[str] = None
    telegram_api_base: str = "https://api.telegram.org"

    # Print a pairing code for this user at startup
    bootstrap_user_id: Optional[str] = None


settings = Settings()
