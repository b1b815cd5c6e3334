import logging
import os
from decimal import Decimal

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    currency: str = "BRL"
    max_attempts: int = Field(default=5, ge=1)
    retry_backoff_ms: int = Field(default=5, ge=0)
    unique_video_links: bool = True
    advertiser_bonus: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    clipper_bonus: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    log_level: str = "INFO"

    @property
    def retry_backoff_seconds(self) -> float:
        return self.retry_backoff_ms / 1000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            currency=os.getenv("SETTLEMENT_CURRENCY", "BRL"),
            max_attempts=int(os.getenv("SETTLEMENT_MAX_ATTEMPTS", "5")),
            retry_backoff_ms=int(os.getenv("SETTLEMENT_RETRY_BACKOFF_MS", "5")),
            unique_video_links=_env_bool("SETTLEMENT_UNIQUE_VIDEO_LINKS", True),
            advertiser_bonus=Decimal(os.getenv("SETTLEMENT_ADVERTISER_BONUS", "0.00")),
            clipper_bonus=Decimal(os.getenv("SETTLEMENT_CLIPPER_BONUS", "0.00")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
