"""Runtime configuration, read from ``VENUE_*`` environment variables."""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from pydantic import BaseModel, Field

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseModel):
    # Used when no TechCapacityConfig is marked active.
    default_block_minutes: int = Field(default=30, gt=0)
    default_slots_per_block: int = Field(default=10, ge=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for name in cls.model_fields:
            raw = env.get(f"VENUE_{name.upper()}")
            if raw is not None:
                values[name] = raw
        return cls(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(settings: Settings | None = None) -> None:
    """Install a single stream handler on the package logger."""
    settings = settings or get_settings()
    logger = logging.getLogger("venue_booking")
    logger.setLevel(settings.log_level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)
