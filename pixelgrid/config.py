"""
Configuration for Pixel Grid
=============================

Environment-driven settings. Server values use the ``PIXELGRID_`` prefix,
board/client values use ``PIXELGRID_CLIENT_``.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import PAYMENT_WINDOW_SECONDS, PRICE_PER_CELL, STATUS_POLL_SECONDS


class Settings(BaseSettings):
    """Server settings."""
    model_config = SettingsConfigDict(env_prefix="PIXELGRID_", env_file=".env", extra="ignore")

    app_name: str = "Pixel Grid"
    version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 3001

    database_url: str = "sqlite:///pixelgrid.db"
    cors_origins: List[str] = ["*"]

    # Mercado Pago
    mercadopago_access_token: str = ""
    mercadopago_api_url: str = "https://api.mercadopago.com"
    mercadopago_timeout: float = 30.0
    # Public URL of this server; notifications are only requested when it is not localhost
    backend_url: Optional[str] = None

    price_per_cell: float = PRICE_PER_CELL
    reject_overlap: bool = False

    # Orphaned pending items
    pending_ttl_seconds: int = 3 * PAYMENT_WINDOW_SECONDS
    reaper_interval_seconds: float = 60.0

    @property
    def notification_url(self) -> Optional[str]:
        if self.backend_url and "localhost" not in self.backend_url:
            return f"{self.backend_url.rstrip('/')}/api/payments/webhook"
        return None


class ClientSettings(BaseSettings):
    """Board settings."""
    model_config = SettingsConfigDict(env_prefix="PIXELGRID_CLIENT_", env_file=".env", extra="ignore")

    api_url: str = "http://localhost:3001"
    timeout: float = 30.0
    price_per_cell: float = PRICE_PER_CELL
    poll_interval: float = STATUS_POLL_SECONDS
    payment_window: float = PAYMENT_WINDOW_SECONDS
    image_cache_size: int = 256
