from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core
    environment: str = Field(default="dev")
    app_name: str = Field(default="Call Dispatch API")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Expiration windows per call category, in minutes
    emergency_expiry_minutes: int = Field(default=5, alias="EMERGENCY_EXPIRY_MINUTES")
    daytime_expiry_minutes: int = Field(default=15, alias="DAYTIME_EXPIRY_MINUTES")
    scheduled_expiry_minutes: int = Field(default=15, alias="SCHEDULED_EXPIRY_MINUTES")

    # Default tenant bonus amounts
    emergency_call_bonus: float = Field(default=100, alias="EMERGENCY_CALL_BONUS")
    daytime_call_bonus: float = Field(default=25, alias="DAYTIME_CALL_BONUS")
    default_call_bonus: float = Field(default=50, alias="DEFAULT_CALL_BONUS")

    # Sweeper
    sweep_interval_seconds: float = Field(default=5, alias="SWEEP_INTERVAL_SECONDS")
    sweeper_enabled: bool = Field(default=True, alias="SWEEPER_ENABLED")

    # Marketplace
    marketplace_fee_days: int = Field(default=30, alias="MARKETPLACE_FEE_DAYS")

    # Notifications
    sms_webhook_url: Optional[str] = Field(default=None, alias="SMS_WEBHOOK_URL")
    sms_timeout_seconds: float = Field(default=5.0, alias="SMS_TIMEOUT_SECONDS")


settings = Settings()
