from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_title: str = "Hotel Reservation Core API"
    log_level: str = "INFO"

    # Auth
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Inventory
    room_catalog_path: Optional[str] = None
    currency: str = "ETB"
    max_stay_nights: int = 30

    # Availability probes
    probe_window_days: int = 90
    max_probe_days: int = 366

    # Payment gateway
    gateway_checkout_base_url: str = "https://checkout.gateway.example/pay"
    gateway_webhook_secret: str = "change-me-webhook-secret"
    tx_ref_prefix: str = "HRC"
    intent_ttl_minutes: int = 30

    # Caller-side polling defaults (20 polls x 3 seconds)
    poll_interval_seconds: float = 3.0
    poll_max_attempts: int = 20

    model_config = {
        "env_prefix": "RESERVATION_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
